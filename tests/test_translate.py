import errno
import os
import shutil
import tempfile
import unittest
from unittest import mock

from pysl import translate
from pysl.config import Config
from pysl.errors import Kind, OutputError
from pysl.extract import HEADER
from pysl.state import State

from tests.test_support import kernel, run_pysl, source

FOO_VARS = source("vars.py", """
    #pysl:start
    #pysl:vars
    #pysl:dims 2
    Data: NDArray[np.float32]
    #pysl:end
""")

FOO_CODE = source("compute.py", """
    #pysl:start
    def Compute(i: u32):  #pysl:kernel
        atomic.add(Data, (i, 0), Data[i, 1])
    #pysl:end
""")

IO_VARS = source("vars.py", """
    #pysl:start
    #pysl:vars
    Data: NDArray[np.float32]
    Out: NDArray[np.float32]
    #pysl:end
""")

RW_CODE = source("code.py", """
    #pysl:start
    def Writer(i: u32):  #pysl:kernel read-write:Data
        Data[i] = 1.0

    def Reader(i: u32):  #pysl:kernel
        Out[i] = Data[i]
    #pysl:end
""")


class AtomicKernelTests(unittest.TestCase):
    def setUp(self):
        self.st, self.report, texts = run_pysl([FOO_VARS, FOO_CODE])
        self.text = texts["Compute.wgsl"]

    def test_header_declares_atomic_storage(self):
        self.assertTrue(self.text.startswith(
            '// Code generated by "pysl"; DO NOT EDIT\n// kernel: Compute\n'))
        self.assertIn("@group(0) @binding(0)\n"
                      "var<storage, read> TensorStrides: array<u32>;", self.text)
        self.assertIn("@group(0) @binding(1)\n"
                      "var<storage, read_write> Data: array<atomic<f32>>;", self.text)

    def test_entry_point_calls_kernel(self):
        self.assertIn("@compute @workgroup_size(64, 1, 1)\n"
                      "fn main(@builtin(global_invocation_id) idx: vec3<u32>) {\n"
                      "    Compute(idx.x);\n"
                      "}", self.text)

    def test_atomic_update_and_loads(self):
        self.assertIn("fn Index2D(s0: u32, s1: u32, i0: u32, i1: u32) -> u32 {\n"
                      "    return s0 * i0 + s1 * i1;\n"
                      "}", self.text)
        self.assertIn('//////// import: "compute.py"', self.text)
        self.assertNotIn('//////// import: "vars.py"', self.text)
        self.assertIn(
            "atomicAdd(&Data[Index2D(TensorStrides[0], TensorStrides[1], u32(i), u32(0))], "
            "atomicLoad(&Data[Index2D(TensorStrides[0], TensorStrides[1], u32(i), u32(1))]));",
            self.text)
        self.assertNotIn("+=", self.text)

    def test_kernel_resolution(self):
        kn = kernel(self.st, "Compute")
        self.assertEqual(set(kn.atomics), {"Data"})
        self.assertEqual(kn.n_buffers, 2)
        self.assertEqual(self.report.max_buffers, 2)
        self.assertEqual(self.report.n_over, 0)
        self.assertEqual(self.st.diagnostics.errors, [])
        self.assertEqual(self.st.diagnostics.warnings, [])

    def test_buffer_ceiling_is_reported(self):
        st, report, texts = run_pysl([FOO_VARS, FOO_CODE], max_storage_buffers=1)
        self.assertEqual(report.n_over, 1)
        self.assertIn("Compute.wgsl", texts)
        warns = st.diagnostics.of_kind(Kind.RESOURCE)
        self.assertEqual(len(warns), 1)
        self.assertEqual(warns[0].kernel, "Compute")

    def test_kernel_source_is_logged_at_debug_level(self):
        with self.assertLogs("pysl.translate", level="DEBUG") as logs:
            run_pysl([FOO_VARS, FOO_CODE])
        self.assertTrue(any("kernel Compute source:" in m
                            and "atomic.add(Data, (i, 0), Data[i, 1])" in m
                            for m in logs.output))


class ReadWriteTests(unittest.TestCase):
    def test_read_write_access_is_per_kernel(self):
        st, report, texts = run_pysl([IO_VARS, RW_CODE])
        self.assertEqual(sorted(texts), ["Reader.wgsl", "Writer.wgsl"])
        self.assertIn("var<storage, read_write> Data: array<f32>;", texts["Writer.wgsl"])
        self.assertIn("var<storage, read> Data: array<f32>;", texts["Reader.wgsl"])
        self.assertIn("var<storage, read_write> Out: array<f32>;", texts["Reader.wgsl"])
        self.assertIn("Out[Index1D(TensorStrides[10], u32(i))] = "
                      "Data[Index1D(TensorStrides[0], u32(i))];", texts["Reader.wgsl"])
        self.assertNotIn("fn Writer", texts["Reader.wgsl"])
        self.assertEqual(st.diagnostics.warnings, [])


class SplitBufferTests(unittest.TestCase):
    def test_split_tensor_accessors(self):
        vars_src = source("vars.py", """
            #pysl:start
            #pysl:vars
            #pysl:nbuffs 3
            Big: NDArray[np.float32]
            #pysl:end
        """)
        code = source("code.py", """
            #pysl:start
            def Fill(i: u32):  #pysl:kernel
                Big[i] = Big[i] + 1.0
                atomic.add(Big, i, 2.0)
            #pysl:end
        """)
        st, report, texts = run_pysl([vars_src, code], max_buffer_size=400)
        text = texts["Fill.wgsl"]
        for b in range(3):
            self.assertIn(f"@group(0) @binding({b + 1})\n"
                          f"var<storage, read_write> Big{b}: array<atomic<f32>>;", text)
        split = st.global_var("Big").split
        self.assertEqual(split.per_buffer, 100)
        self.assertIn("\n".join([
            "fn Big_Get(ix: u32) -> f32 {",
            f"    let bi = ix / {split.per_buffer}u;",
            f"    let ii = ix % {split.per_buffer}u;",
            "    if (bi == 0u) { return atomicLoad(&Big0[ii]); }",
            "    if (bi == 1u) { return atomicLoad(&Big1[ii]); }",
            "    return atomicLoad(&Big2[ii]);",
            "}",
        ]), text)
        self.assertIn("fn Big_Set(val: f32, ix: u32) {", text)
        self.assertIn("    if (bi == 1u) { atomicStore(&Big1[ii], val); return; }", text)
        self.assertIn("fn Big_AtomicAdd(ix: u32, val: f32) -> f32 {", text)
        self.assertIn("    return atomicAdd(&Big2[ii], val);", text)
        self.assertIn("Big_Set((Big_Get(Index1D(TensorStrides[0], u32(i))) + 1.0), "
                      "Index1D(TensorStrides[0], u32(i)));", text)
        self.assertIn("Big_AtomicAdd(Index1D(TensorStrides[0], u32(i)), 2.0);", text)
        self.assertEqual(kernel(st, "Fill").n_buffers, 4)
        self.assertEqual(split.locate(250), (2, 50))


class RuntimeModuleTests(unittest.TestCase):
    def test_runtime_appended_only_when_referenced(self):
        code = source("code.py", """
            #pysl:start
            def Rand(i: u32):  #pysl:kernel
                Out[i] = slrand.float32(sltype.Uint32Vec2(i, 0), 1, 7)

            def Plain(i: u32):  #pysl:kernel
                Out[i] = 1.0
            #pysl:end
        """)
        _, _, texts = run_pysl([IO_VARS, code])
        rand = texts["Rand.wgsl"]
        self.assertIn("slrand_float32(vec2<u32>(i, 0), 1, 7)", rand)
        self.assertIn("fn slrand_philox(", rand)
        self.assertLess(rand.index('//////// import: "sltype.wgsl"'),
                        rand.index('//////// import: "slrand.wgsl"'))
        self.assertNotIn("slbool.wgsl", rand)
        self.assertNotIn(".wgsl\"", texts["Plain.wgsl"])

    def test_integer_floor_division_pulls_in_sltype(self):
        code = source("code.py", """
            #pysl:start
            def Wrap(i: u32):  #pysl:kernel
                n = -8
                k = n // 3
                Out[i] = 1.0
            #pysl:end
        """)
        _, _, texts = run_pysl([IO_VARS, code])
        text = texts["Wrap.wgsl"]
        self.assertIn("var k = sltype_floordiv_i32(n, 3);", text)
        self.assertIn("fn sltype_floordiv_i32(a: i32, b: i32) -> i32 {", text)
        self.assertNotIn("slrand.wgsl", text)


class OutputTests(unittest.TestCase):
    def setUp(self):
        self.out = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.out)

    def run_foo(self, **cfg):
        st = State(Config(output=self.out, validate=False, **cfg))
        return st, st.run([FOO_VARS, FOO_CODE])

    def test_stale_kernels_and_imports_are_removed(self):
        with open(os.path.join(self.out, "Old.wgsl"), "w") as f:
            f.write("// stale\n")
        _, report = self.run_foo()
        self.assertEqual(sorted(os.listdir(self.out)), ["Compute.wgsl"])
        self.assertEqual(report.files, [os.path.join(self.out, "Compute.wgsl")])

    def test_keep_leaves_imports(self):
        self.run_foo(keep=True)
        imports = os.path.join(self.out, "imports")
        self.assertEqual(sorted(os.listdir(imports)), ["compute.py", "vars.py"])
        with open(os.path.join(imports, "compute.py")) as f:
            self.assertEqual(f.readline().rstrip("\n"), HEADER[0])

    def test_output_path_that_is_a_file_is_fatal(self):
        path = os.path.join(self.out, "taken")
        with open(path, "w") as f:
            f.write("x")
        st = State(Config(output=path, validate=False))
        with self.assertRaises(OutputError):
            st.run([FOO_VARS, FOO_CODE])

    def test_failed_kernel_write_keeps_previous_outputs(self):
        old = os.path.join(self.out, "Old.wgsl")
        with open(old, "w") as f:
            f.write("// old\n")
        stage = translate.stage_file

        def stage_or_fail(path, text):
            if path.endswith("Writer.wgsl"):
                raise OutputError(f"cannot write {path!r}: disk full")
            return stage(path, text)

        st = State(Config(output=self.out, validate=False))
        with mock.patch("pysl.translate.stage_file", side_effect=stage_or_fail):
            with self.assertRaises(OutputError):
                st.run([IO_VARS, RW_CODE])
        names = os.listdir(self.out)
        self.assertEqual([n for n in names if n.endswith(".wgsl")], ["Old.wgsl"])
        self.assertEqual([n for n in names if n.endswith(".tmp")], [])

    def test_stage_file_removes_temp_file_when_write_fails(self):
        fdopen = os.fdopen

        class FullDisk:
            def __init__(self, fd, mode):
                self.f = fdopen(fd, mode)

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                self.f.close()

            def write(self, text):
                raise OSError(errno.ENOSPC, "No space left on device")

        with mock.patch("os.fdopen", FullDisk):
            with self.assertRaises(OutputError):
                translate.stage_file(os.path.join(self.out, "K.wgsl"), "fn k() {}\n")
        self.assertEqual(os.listdir(self.out), [])

    def test_reference_error_skips_only_the_failing_file(self):
        bad = source("bad.py", """
            #pysl:start
            def Bad(i: u32):  #pysl:kernel
                p = GetMissing(0)
            #pysl:end
        """)
        good = source("good.py", """
            #pysl:start
            def Good(i: u32):  #pysl:kernel
                Out[i] = 1.0
            #pysl:end
        """)
        st = State(Config(output=self.out, validate=False))
        report = st.run([IO_VARS, bad, good])
        self.assertEqual([os.path.basename(p) for p in report.files], ["Good.wgsl"])
        errs = st.diagnostics.errors
        self.assertEqual(len(errs), 1)
        self.assertEqual(errs[0].kind, Kind.REFERENCE)
        self.assertEqual(errs[0].file, "bad.py")


if __name__ == "__main__":
    unittest.main()
