from __future__ import annotations

import importlib.util
import threading
import unittest


JAX_AVAILABLE = importlib.util.find_spec("jax") is not None


def _values(stack) -> list:
    return [value.to_python() for value in stack]


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for fill tests")
class FillTests(unittest.TestCase):
    def _eval(self, source: str, **kwargs) -> list:
        from uiua_jax import evaluate

        return _values(evaluate(source, **kwargs))

    def test_explicit_fill_pads_structural_results(self) -> None:
        cases = [
            ("⬚0+ [1 2] [1 2 3]", [[2, 4, 3]]),
            ("⬚0↙ 4 [1 2]", [[1, 2, 0, 0]]),
            ("⬚0↙ ¯4 [1 2]", [[0, 0, 1, 2]]),
            ("⬚0⊟ [1 2] [3]", [[[1, 2], [3, 0]]]),
            ("⬚0⊂ [1 2] [[3 4 5]]", [[[1, 2, 0], [3, 4, 5]]]),
            ("⬚5⊢ []", [5]),
            ("⬚0⊏ [0 5] [7 8]", [[7, 0]]),
            ("⬚9⊡ [0 3] [[1 2]]", [9]),
            ("⬚0↯ 4 [1 2]", [[1, 2, 0, 0]]),
            ("⬚@-↙ 4 \"ab\"", ["ab--"]),
            ("⬚0[1 [2 3]]", [[[1, 0], [2, 3]]]),
            ("⬚0≡⇡ [1 3]", [[[0, 0, 0], [0, 1, 2]]]),
        ]
        for source, expected in cases:
            with self.subTest(source=source):
                self.assertEqual(self._eval(source), expected)

    def test_fill_applies_only_inside_its_body(self) -> None:
        from uiua_jax import RuntimeErrorKind, UiuaRuntimeError

        self.assertEqual(self._eval("↙ 3 [1 2 3] ⬚0↙ 3 [1]"), [[1, 0, 0], [1, 2, 3]])
        with self.assertRaises(UiuaRuntimeError) as ctx:
            self._eval("↙ 3 [1] ⬚0↙ 3 [1]")
        self.assertEqual(ctx.exception.kind, RuntimeErrorKind.INDEX_OUT_OF_BOUNDS)

    def test_fill_value_of_another_kind_is_ignored(self) -> None:
        from uiua_jax import UiuaRuntimeError

        with self.assertRaises(UiuaRuntimeError):
            self._eval('⬚0↙ 4 "ab"')

    def test_nested_fill_uses_the_innermost_value(self) -> None:
        self.assertEqual(self._eval("⬚1(⬚2↙ 3 [0])"), [[0, 2, 2]])

    def test_default_fill_from_context(self) -> None:
        from uiua_jax import ExecutionContext

        context = ExecutionContext(default_fill=True)
        self.assertEqual(self._eval("↙ 4 [1 2]", context=context), [[1, 2, 0, 0]])
        self.assertEqual(self._eval('↙ 3 "a"', context=context), ["a\0\0"])
        self.assertEqual(self._eval("+ [1 2] [1 2 3]", context=context), [[2, 4, 3]])
        (boxed,) = self._eval("↙ 2 {1}", context=context)
        self.assertEqual(boxed, [1, []])

    def test_fill_value_must_be_a_value(self) -> None:
        from uiua_jax import CompileError, CompileErrorKind, compile

        with self.assertRaises(CompileError) as ctx:
            compile("⬚+↙ 4 [1 2]")
        self.assertEqual(ctx.exception.kind, CompileErrorKind.ARITY_MISMATCH)


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for scope tests")
class BindingAndScopeTests(unittest.TestCase):
    def _eval(self, source: str) -> list:
        from uiua_jax import evaluate

        return _values(evaluate(source))

    def test_value_and_function_bindings(self) -> None:
        self.assertEqual(self._eval("X ← 5\n+ X X"), [10])
        self.assertEqual(self._eval("X ← + 1 2\nX"), [3])
        self.assertEqual(self._eval("F ← +1\nF F 2"), [4])
        self.assertEqual(self._eval("Sq ← ×.\nSq 3"), [9])
        self.assertEqual(self._eval("X ← 1\nX ← 2\nX"), [2])

    def test_word_named_bindings(self) -> None:
        self.assertEqual(self._eval("inc ← add 1\ninc inc 1"), [3])

    def test_function_values_close_over_their_scope(self) -> None:
        self.assertEqual(self._eval("F ← (X ← 3\n(+X))\n! F 1"), [4])
        self.assertEqual(self._eval("Mk ← (N ← 10\n(×N))\nG ← Mk\n! G 2"), [20])

    def test_functions_keep_the_definition_in_force_where_they_were_compiled(self) -> None:
        cases = [
            ("X ← 1\nF ← (X)\nX ← 2\nF", [1]),
            ("X ← 1\nF ← (+X)\nX ← 10\nF 5", [6]),
            ("X ← 1\nF ← (X)\nX ← 2\n[X F]", [[2, 1]]),
            ("G ← (1)\nF ← (G)\nG ← (2)\nF", [1]),
            ("X ← 1\nF ← (X ← 5\nX)\nX ← 2\n[X F]", [[2, 5]]),
        ]
        for source, expected in cases:
            with self.subTest(source=source):
                self.assertEqual(self._eval(source), expected)

    def test_bindings_inside_functions_are_local(self) -> None:
        from uiua_jax import CompileError, CompileErrorKind, compile

        with self.assertRaises(CompileError) as ctx:
            compile("F ← (Y ← 1\nY)\nY")
        self.assertEqual(ctx.exception.kind, CompileErrorKind.UNBOUND_NAME)

    def test_inner_binding_shadows_outer(self) -> None:
        self.assertEqual(self._eval("X ← 1\nF ← (X ← 2\nX)\n[X F]"), [[1, 2]])

    def test_modifier_operands_see_enclosing_bindings(self) -> None:
        self.assertEqual(self._eval("K ← 10\n∵(+K) [1 2]"), [[11, 12]])
        self.assertEqual(self._eval("F ← ×\n/F [1 2 3]"), [6])

    def test_scope_arena_reuses_released_scopes(self) -> None:
        from uiua_jax import Array
        from uiua_jax.interpreter import ScopeArena

        arena = ScopeArena()
        self.assertEqual(arena.live, 1)
        child = arena.create(0)
        arena.bind(0, 0, Array.number(1))
        arena.bind(child, 1, Array.number(2))
        self.assertEqual(arena.lookup(child, 0), Array.number(1))
        self.assertEqual(arena.lookup(child, 1), Array.number(2))

        arena.release(child)
        self.assertEqual(arena.live, 1)
        reused = arena.create(0)
        self.assertEqual(reused, child)
        self.assertEqual(arena.scopes[reused].bindings, {})

        grandchild = arena.create(reused)
        arena.pin(grandchild)
        arena.release(grandchild)
        arena.release(reused)
        self.assertEqual(arena.live, 3)

        arena.release(0)
        self.assertEqual(arena.lookup(0, 0), Array.number(1))


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for execution-context tests")
class ExecutionContextTests(unittest.TestCase):
    def test_interrupt_aborts_the_run(self) -> None:
        from uiua_jax import ExecutionContext, RuntimeErrorKind, UiuaRuntimeError, evaluate

        context = ExecutionContext()
        context.interrupt()
        with self.assertRaises(UiuaRuntimeError) as ctx:
            evaluate("+ 1 2", context=context)
        self.assertEqual(ctx.exception.kind, RuntimeErrorKind.INTERRUPTED)
        self.assertIsNotNone(ctx.exception.span)

        self.assertFalse(context.interrupt_event.is_set())
        self.assertEqual(_values(evaluate("+ 1 2", context=context)), [3])

    def test_interrupt_from_inside_a_long_run(self) -> None:
        from uiua_jax import ExecutionContext, RuntimeErrorKind, UiuaRuntimeError, compile, run

        event = threading.Event()
        context = ExecutionContext(interrupt_event=event)
        program = compile("⍥(+1) 1000000 0")

        timer = threading.Timer(0.05, event.set)
        timer.start()
        try:
            with self.assertRaises(UiuaRuntimeError) as ctx:
                run(program, (), context=context)
        finally:
            timer.cancel()
        self.assertEqual(ctx.exception.kind, RuntimeErrorKind.INTERRUPTED)

    def test_parallel_execution_is_bit_identical(self) -> None:
        from uiua_jax import ExecutionContext, compile, run

        program = compile("⊞+ ⇡40 ⇡50\n√ + 1 × 3 ⇡5000\n÷ 7 ⇡5000\n◿ 3 ⇡5000")
        sequential = run(program, (), context=ExecutionContext(workers=0))
        parallel = run(program, (), context=ExecutionContext(workers=4, parallel_min_size=16))
        self.assertEqual(len(sequential), len(parallel))
        for left, right in zip(sequential, parallel):
            self.assertEqual(left.kind, right.kind)
            self.assertEqual(left.shape, right.shape)
            self.assertEqual(left.data.tolist(), right.data.tolist())

    def test_repeated_runs_are_identical(self) -> None:
        from uiua_jax import ExecutionContext, compile, run

        program = compile("/+ × . ⇡100")
        first = run(program, (), context=ExecutionContext(workers=2, parallel_min_size=8))
        second = run(program, (), context=ExecutionContext(workers=2, parallel_min_size=8))
        self.assertEqual(_values(first), _values(second))
        self.assertEqual(_values(first), [328350])


if __name__ == "__main__":
    unittest.main()
