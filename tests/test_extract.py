import unittest

from pysl.config import Config
from pysl.errors import Kind, StructuralError
from pysl.extract import HEADER, Extractor, append_header, extract_files
from pysl.state import RegionKind, SourceFile, State


class PlainRegionTests(unittest.TestCase):
    def test_plain_regions_keep_tagged_lines_in_order(self):
        lines = [
            "x = 1",
            "#pysl:start",
            "a = 2",
            "b = 3",
            "#pysl:end",
            "c = 4",
            "  #pysl:start",
            "d = 5",
            "  #pysl:end",
        ]
        ef = Extractor(State()).extract("f.py", lines)
        self.assertEqual(ef.lines, ["a = 2", "b = 3", "d = 5"])
        self.assertFalse(ef.has_vars)
        self.assertEqual(ef.regions, [])

    def test_end_without_start_is_structural(self):
        with self.assertRaises(StructuralError):
            Extractor(State()).extract("f.py", ["x = 1", "#pysl:end"])

    def test_region_left_open_is_structural(self):
        with self.assertRaises(StructuralError):
            Extractor(State()).extract("f.py", ["#pysl:start", "x = 1"])

    def test_start_inside_region_is_structural(self):
        with self.assertRaises(StructuralError):
            Extractor(State()).extract("f.py", ["#pysl:start", "#pysl:start", "#pysl:end"])


class SpecialRegionTests(unittest.TestCase):
    def test_wgsl_region_keeps_start_directive_and_comment_lines(self):
        lines = [
            "#pysl:start",
            "def f():",
            "    pass",
            "#pysl:end",
            "#pysl:wgsl",
            "# fn g() -> f32 {",
            "#     return 1.0;",
            "# }",
            "#pysl:end",
        ]
        ef = Extractor(State()).extract("f.py", lines)
        self.assertEqual(ef.lines[2], "#pysl:wgsl")
        self.assertEqual(len(ef.lines), 6)
        self.assertEqual(len(ef.regions), 1)
        reg = ef.regions[0]
        self.assertEqual(reg.kind, RegionKind.WGSL)
        self.assertEqual((reg.start, reg.end), (2, 6))

    def test_nowgsl_region_restores_enclosing_region(self):
        lines = [
            "#pysl:start",
            "x = 1",
            "#pysl:nowgsl",
            "y = 2",
            "#pysl:end",
            "z = 3",
            "#pysl:end",
            "w = 4",
        ]
        ef = Extractor(State()).extract("f.py", lines)
        self.assertEqual(ef.lines, ["x = 1", "#pysl:nowgsl", "y = 2", "z = 3"])
        reg = ef.regions[0]
        self.assertEqual(reg.kind, RegionKind.NOWGSL)
        self.assertIs(ef.region_at(3), reg)
        self.assertIsNone(ef.region_at(4))

    def test_nested_special_regions_are_structural(self):
        with self.assertRaises(StructuralError):
            Extractor(State()).extract("f.py", ["#pysl:wgsl", "#pysl:nowgsl", "#pysl:end"])


class KernelDeclarationTests(unittest.TestCase):
    def test_kernel_with_system_and_read_write_list(self):
        st = State()
        lines = [
            "#pysl:start",
            "def Compute(i: u32):  #pysl:kernel Sim read-write:Data,Params",
            "    x = 1",
            "",
            "    y = 2",
            "def other():",
            "    pass",
            "#pysl:end",
        ]
        Extractor(st).extract("f.py", lines)
        kn = st.systems["Sim"].kernels["Compute"]
        self.assertEqual(kn.system, "Sim")
        self.assertEqual(kn.args, "i: u32")
        self.assertEqual(kn.arg_names, ["i"])
        self.assertEqual(set(kn.read_write_vars), {"Data", "Params"})
        self.assertIn("y = 2", kn.func_code)
        self.assertNotIn("def other", kn.func_code)

    def test_kernel_without_system_goes_to_default(self):
        st = State()
        Extractor(st).extract("f.py", ["#pysl:start", "def K(i: u32):  #pysl:kernel",
                                       "    pass", "#pysl:end"])
        self.assertIn("K", st.systems["Default"].kernels)
        self.assertEqual(st.systems["Default"].kernels["K"].read_write_vars, {})

    def test_extra_kernel_fields_abort_the_file_only(self):
        st = State()
        bad = SourceFile("bad.py", ["#pysl:start", "def K(i: u32):  #pysl:kernel A B",
                                    "    pass", "#pysl:end"])
        good = SourceFile("good.py", ["#pysl:start", "def G(i: u32):  #pysl:kernel",
                                      "    pass", "#pysl:end"])
        done, skipped = extract_files(st, [bad, good], {})
        self.assertEqual((done, skipped), (1, 1))
        self.assertNotIn("K", st.systems["Default"].kernels)
        self.assertIn("G", st.systems["Default"].kernels)
        errs = st.diagnostics.errors
        self.assertEqual(len(errs), 1)
        self.assertEqual(errs[0].kind, Kind.STRUCTURAL)
        self.assertEqual(errs[0].file, "bad.py")

    def test_redeclared_kernel_is_warned(self):
        st = State()
        lines = ["#pysl:start", "def K(i: u32):  #pysl:kernel", "    pass", "#pysl:end"]
        extract_files(st, [SourceFile("a.py", lines), SourceFile("b.py", lines)], {})
        self.assertEqual(len(st.diagnostics.warnings), 1)


class PackageAndVarsFileTests(unittest.TestCase):
    def test_import_package_prefix_is_stripped_except_on_import_lines(self):
        st = State(Config(import_packages=["phys"]))
        lines = [
            "#pysl:start",
            "from phys import Vector",
            "def f():",
            "    v = phys.Vector(1)",
            "    w = geophys.Thing(2)",
            "#pysl:end",
        ]
        ef = Extractor(st).extract("f.py", lines)
        self.assertEqual(ef.lines[0], "from phys import Vector")
        self.assertEqual(ef.lines[2], "    v = Vector(1)")
        self.assertEqual(ef.lines[3], "    w = geophys.Thing(2)")

    def test_vars_files_are_set_aside_and_imports_are_renamed(self):
        st = State()
        vars_file = SourceFile("vars.py", ["#pysl:start", "#pysl:vars",
                                           "Data: NDArray[np.float32]", "#pysl:end"])
        code = SourceFile("code.py", ["#pysl:start", "x = 1", "#pysl:end"])
        lib = SourceFile("lib.py", ["#pysl:start", "y = 2", "#pysl:end"])
        empty = SourceFile("empty.py", ["z = 3"])
        extract_files(st, [code, vars_file, empty], {"phys": [lib]})
        self.assertEqual(list(st.vars_files), ["vars.py"])
        self.assertEqual(list(st.files), ["code.py", "phys-lib.py"])
        self.assertEqual(st.all_files()[0].name, "vars.py")
        self.assertIn("phys", st.import_packages)

    def test_append_header(self):
        lines = append_header(["x = 1"])
        self.assertEqual(lines[:len(HEADER)], HEADER)
        self.assertEqual(lines[-1], "x = 1")


if __name__ == "__main__":
    unittest.main()
