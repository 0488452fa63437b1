import ast
import textwrap
import unittest

from pysl.codegen_base import BaseCodeGenerator


def generate(source):
    tree = ast.parse(textwrap.dedent(source))
    gen = BaseCodeGenerator()
    gen._infer_types(tree)
    gen._refine_param_types(tree)
    for node in tree.body:
        if isinstance(node, ast.FunctionDef):
            gen._gen_function(node)
    return gen, "\n".join(gen.lines)


class BaseInferenceTests(unittest.TestCase):
    def test_annotation_marks_float_param(self):
        gen, _ = generate("""
            def k(mass: float, n):
                x = mass / n
                return x
        """)
        self.assertEqual(gen.func_param_types["k"]["mass"], gen.FLOAT)
        self.assertEqual(gen.func_param_types["k"]["n"], gen.INT)
        self.assertEqual(gen.func_local_types["k"]["x"], gen.FLOAT)
        self.assertEqual(gen.func_return_types["k"], gen.FLOAT)

    def test_unannotated_params_take_argument_types(self):
        gen, _ = generate("""
            def scale(v, s):
                return v * s

            def k(a: float):
                b = scale(a, 2)
        """)
        self.assertEqual(gen.func_param_types["scale"], {"v": gen.FLOAT, "s": gen.INT})
        self.assertNotIn("k", gen.func_return_types)

    def test_merge_prefers_float_then_unsigned(self):
        gen = BaseCodeGenerator()
        self.assertEqual(gen._merge_types(gen.INT, gen.FLOAT), gen.FLOAT)
        self.assertEqual(gen._merge_types(gen.INT, gen.UINT), gen.UINT)
        self.assertEqual(gen._merge_types(gen.BOOL, gen.INT), gen.BOOL)

    def test_vector_annotations(self):
        gen, _ = generate("""
            def k(v: Float32Vec3, w: sltype.Uint32Vec2):
                a = v.x
                b = w.y
        """)
        self.assertEqual(gen.func_param_types["k"]["v"], "vec3<f32>")
        self.assertEqual(gen.func_param_types["k"]["w"], "vec2<u32>")
        self.assertEqual(gen.func_local_types["k"], {"a": "f32", "b": "u32"})


class BaseCodegenTests(unittest.TestCase):
    def test_mixed_division_casts_int_operand(self):
        _, text = generate("""
            def k(mass: float, n):
                x = mass / n
                return x
        """)
        self.assertEqual(text, textwrap.dedent("""\
            fn k(mass: f32, n: i32) -> f32 {
                var x = (mass / f32(n));
                return x;
            }
        """))

    def test_expression_forms(self):
        _, text = generate("""
            def f(a: int, b: int, x: float) -> float:
                y = a / b
                z = x if a > b else 0.0
                ok = 0 < a < b
                p = x ** 2.0
                q = x // 2.0
                r = a ** 2
                n = not ok
                g = lambda: 1
                return y
        """)
        self.assertIn("fn f(a: i32, b: i32, x: f32) -> f32 {", text)
        self.assertIn("var y = (f32(a) / f32(b));", text)
        self.assertIn("var z = select(0.0, x, (a > b));", text)
        self.assertIn("var ok = ((0 < a) && (a < b));", text)
        self.assertIn("var p = pow(x, 2.0);", text)
        self.assertIn("var q = floor(x / 2.0);", text)
        self.assertIn("var r = i32(pow(f32(a), f32(2)));", text)
        self.assertIn("var n = (!ok);", text)
        self.assertIn("var g = /* unsupported: Lambda */;", text)

    def test_control_flow(self):
        _, text = generate("""
            def f(n: int) -> int:
                total = 0
                for i in range(n):
                    if i > 10:
                        break
                    elif i == 3:
                        continue
                    else:
                        total += i
                while total > 100:
                    total -= 1
                return total
        """)
        self.assertEqual(text, textwrap.dedent("""\
            fn f(n: i32) -> i32 {
                var total: i32 = 0;
                for (var i: i32 = 0; i < n; i += 1) {
                    if ((i > 10)) {
                        break;
                    } else if ((i == 3)) {
                        continue;
                    } else {
                        total += i;
                    }
                }
                while ((total > 100)) {
                    total -= 1;
                }
                return total;
            }
        """))

    def test_unsigned_and_descending_ranges(self):
        _, text = generate("""
            def g(n: u32):
                for i in range(n):
                    pass
                for j in range(10, 0, -1):
                    pass
        """)
        self.assertIn("fn g(n: u32) {", text)
        self.assertIn("for (var i: u32 = 0u; i < n; i += 1u) {", text)
        self.assertIn("// pass", text)
        self.assertIn("for (var j: i32 = 10; j > 0; j += (-1)) {", text)

    def test_locals_first_set_in_branches_are_hoisted(self):
        _, text = generate("""
            def h(a: float) -> float:
                if a > 0.0:
                    y = a * 2.0
                else:
                    y = 0.0
                return y
        """)
        self.assertIn(textwrap.dedent("""\
            fn h(a: f32) -> f32 {
                var y: f32;
                if ((a > 0.0)) {
                    y = (a * 2.0);
                } else {
                    y = 0.0;
                }
                return y;
            }"""), text)

    def test_literal_initializers_are_typed(self):
        _, text = generate("""
            def k():
                x: float = 0
                c: u32 = 3
                w = 1.5
                type = 1
                type += 2
        """)
        self.assertIn("var x: f32 = 0.0;", text)
        self.assertIn("var c: u32 = 3u;", text)
        self.assertIn("var w: f32 = 1.5;", text)
        self.assertIn("var type_: i32 = 1;", text)
        self.assertIn("type_ += 2;", text)


if __name__ == "__main__":
    unittest.main()
