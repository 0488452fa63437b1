import unittest

from pysl.callgraph import CallKind, FuncGraph
from pysl.errors import Kind
from pysl.state import TensorKind, Var


def tensor(name, nbuffs=1):
    return Var(name=name, tensor=True, tensor_kind=TensorKind.FLOAT32, nbuffs=nbuffs)


def graph(edges):
    gr = FuncGraph()
    for caller, callees in edges.items():
        fn = gr.recycle(caller)
        for cnm in callees:
            fn.funcs[cnm] = gr.recycle(cnm)
    return gr


class ReachabilityTests(unittest.TestCase):
    def test_all_funcs_follows_calls_transitively(self):
        gr = graph({"K": ["a"], "a": ["b"], "b": [], "unused": ["b"]})
        self.assertEqual(set(gr.all_funcs("K")), {"K", "a", "b"})
        self.assertIsNone(gr.all_funcs("nope"))

    def test_reachable_sets_grow_with_added_edges(self):
        gr = graph({"K": ["a"], "a": [], "b": ["c"], "c": []})
        before = set(gr.all_funcs("K"))
        gr.funcs["a"].funcs["b"] = gr.funcs["b"]
        after = set(gr.all_funcs("K"))
        self.assertTrue(before < after)
        self.assertEqual(after, {"K", "a", "b", "c"})

    def test_cycle_is_reported_as_warning(self):
        gr = graph({"K": ["a"], "a": ["b"], "b": ["a"]})
        self.assertEqual(gr.find_cycle("K"), ["a", "b", "a"])
        res = gr.resolve("K")
        self.assertIsNotNone(res)
        self.assertEqual(set(res.functions), {"K", "a", "b"})
        warns = gr.diagnostics.warnings
        self.assertEqual(len(warns), 1)
        self.assertEqual(warns[0].kind, Kind.STRUCTURAL)
        self.assertIn("a -> b -> a", warns[0].message)

    def test_acyclic_graph_has_no_cycle(self):
        gr = graph({"K": ["a", "b"], "a": ["b"], "b": []})
        self.assertIsNone(gr.find_cycle("K"))

    def test_unknown_kernel_is_reference_error(self):
        gr = graph({"K": []})
        self.assertIsNone(gr.resolve("Missing"))
        errs = gr.diagnostics.errors
        self.assertEqual(len(errs), 1)
        self.assertEqual(errs[0].kind, Kind.REFERENCE)
        self.assertEqual(errs[0].kernel, "Missing")


class VarUsageTests(unittest.TestCase):
    def test_buffer_count_includes_strides_and_split_buffers(self):
        gr = graph({"K": ["a"], "a": []})
        big = tensor("Big", nbuffs=3)
        small = tensor("Small")
        gr.funcs["K"].add_var_used(small)
        gr.funcs["a"].add_var_used(big)
        gr.funcs["a"].add_var_used(small)
        gr.funcs["a"].add_atomic(small)
        res = gr.resolve("K")
        self.assertEqual(set(res.touched_vars), {"Big", "Small"})
        self.assertEqual(set(res.atomic_vars), {"Small"})
        self.assertEqual(res.total_buffer_count, 1 + 3 + 1)

    def test_only_reachable_functions_count(self):
        gr = graph({"K": [], "other": []})
        gr.funcs["other"].add_var_used(tensor("Data"))
        res = gr.resolve("K")
        self.assertEqual(res.touched_vars, {})
        self.assertEqual(res.total_buffer_count, 1)


class SignatureTests(unittest.TestCase):
    def test_out_params_propagate_through_call_chain(self):
        gr = graph({"outer": ["middle"], "middle": ["inner"], "inner": []})
        gr.funcs["inner"].params = ["v", "s"]
        gr.funcs["inner"].out_params.add("v")
        gr.funcs["middle"].params = ["p"]
        gr.funcs["middle"].arg_flows.append(("p", "inner", 0))
        gr.funcs["outer"].params = ["q", "r"]
        gr.funcs["outer"].arg_flows.append(("q", "middle", 0))
        gr.funcs["outer"].arg_flows.append(("r", "inner", 1))
        gr.resolve_signatures()
        self.assertEqual(gr.funcs["middle"].out_params, {"p"})
        self.assertEqual(gr.funcs["outer"].out_params, {"q"})
        self.assertEqual(gr.funcs["outer"].out_indexes(), {0})
        self.assertEqual(gr.funcs["outer"].kind, CallKind.OUT_PARAM)
        self.assertEqual(gr.funcs["inner"].kind, CallKind.OUT_PARAM)

    def test_value_params_stay_values(self):
        gr = graph({"f": ["g"], "g": []})
        gr.funcs["g"].params = ["x"]
        gr.funcs["f"].params = ["y"]
        gr.funcs["f"].arg_flows.append(("y", "g", 0))
        gr.funcs["f"].arg_flows.append(("y", "unknown", 0))
        gr.resolve_signatures()
        self.assertEqual(gr.funcs["f"].out_params, set())
        self.assertEqual(gr.funcs["f"].kind, CallKind.VALUE)


class DescribeTests(unittest.TestCase):
    def test_describe_lists_callers_then_callees(self):
        gr = graph({"b": [], "a": ["c", "b"], "c": []})
        self.assertEqual(gr.describe(), "a\n\tb\n\tc\nb\nc")


if __name__ == "__main__":
    unittest.main()
