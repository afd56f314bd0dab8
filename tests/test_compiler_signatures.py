from __future__ import annotations

import importlib.util
import unittest


JAX_AVAILABLE = importlib.util.find_spec("jax") is not None


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for compiler tests")
class CompilerSignatureTests(unittest.TestCase):
    def test_inferred_program_signatures(self) -> None:
        from uiua_jax import Signature, compile

        cases = {
            "": Signature(0, 0),
            "+": Signature(2, 1),
            "+ 1": Signature(1, 1),
            "1 2": Signature(0, 2),
            ". 1": Signature(0, 2),
            ";": Signature(1, 0),
            "[+]": Signature(2, 1),
            "[× 2 3 4]": Signature(0, 1),
            "/+": Signature(1, 1),
            "∧+": Signature(2, 1),
            "⊃+×": Signature(2, 2),
            "⊓¯+": Signature(3, 2),
            "⊙+": Signature(3, 2),
            "∩¯": Signature(2, 2),
            "⍥¯": Signature(2, 1),
            "?+-": Signature(3, 1),
            "?1 2 0": Signature(0, 1),
            "⬚0+": Signature(2, 1),
            "X ← 1\n+ X": Signature(1, 1),
            "F ← +1\nF": Signature(1, 1),
            "F ← (+)\nF 1 2": Signature(0, 1),
        }
        for source, signature in cases.items():
            with self.subTest(source=source):
                self.assertEqual(compile(source).signature, signature)

    def test_dynamic_calls_make_the_signature_unknown(self) -> None:
        from uiua_jax import compile

        for source in ("!", "! (+1) 2", "[! (+)]", "?! ¯ 1"):
            with self.subTest(source=source):
                program = compile(source)
                self.assertIsNone(program.signature)
                self.assertTrue(program.is_dynamic)

    def test_derived_modifier_signatures(self) -> None:
        from uiua_jax import Signature
        from uiua_jax.compiler import derive_signature
        from uiua_jax.primitives import Prim

        cases = [
            (Prim.REDUCE, [Signature(2, 1)], Signature(1, 1)),
            (Prim.SCAN, [Signature(2, 1)], Signature(1, 1)),
            (Prim.FOLD, [Signature(2, 1)], Signature(2, 1)),
            (Prim.EACH, [Signature(2, 3)], Signature(2, 3)),
            (Prim.ROWS, [Signature(1, 1)], Signature(1, 1)),
            (Prim.TABLE, [Signature(2, 2)], Signature(2, 2)),
            (Prim.REPEAT, [Signature(2, 2)], Signature(3, 2)),
            (Prim.DIP, [Signature(2, 1)], Signature(3, 2)),
            (Prim.BOTH, [Signature(2, 1)], Signature(4, 2)),
            (Prim.FORK, [Signature(2, 1), Signature(1, 1)], Signature(2, 2)),
            (Prim.BRACKET, [Signature(2, 1), Signature(1, 1)], Signature(3, 2)),
            (Prim.IF, [Signature(1, 1), Signature(1, 1)], Signature(2, 1)),
            (Prim.FILL, [Signature(0, 1), Signature(2, 1)], Signature(2, 1)),
            (Prim.FILL, [Signature(0, 1), None], None),
            (Prim.EACH, [None], None),
        ]
        for prim, operands, expected in cases:
            with self.subTest(prim=prim.name, operands=operands):
                self.assertEqual(derive_signature(prim, operands), expected)

    def test_arity_mismatch(self) -> None:
        from uiua_jax import CompileError, CompileErrorKind, compile

        cases = {
            "/.": (0, 2),
            "\\¯": (0, 2),
            "∵π": (0, 2),
            "⊞¯": (0, 2),
            "⍥+": (0, 2),
            "?+¯": (0, 3),
            "⬚.⇡": (0, 3),
            "1 /. 2": (2, 4),
        }
        for source, span in cases.items():
            with self.subTest(source=source):
                with self.assertRaises(CompileError) as ctx:
                    compile(source)
                self.assertEqual(ctx.exception.kind, CompileErrorKind.ARITY_MISMATCH)
                self.assertEqual(ctx.exception.span, span)

    def test_unbound_names(self) -> None:
        from uiua_jax import CompileError, CompileErrorKind, compile

        cases = {
            "foo": (0, 3),
            "+ 1 Y": (4, 5),
            "F ← F": (4, 5),
            "F ← (Y ← 1\nY)\nY": (14, 15),
        }
        for source, span in cases.items():
            with self.subTest(source=source):
                with self.assertRaises(CompileError) as ctx:
                    compile(source)
                self.assertEqual(ctx.exception.kind, CompileErrorKind.UNBOUND_NAME)
                self.assertEqual(ctx.exception.span, span)
                self.assertIn("UnboundName", str(ctx.exception))

    def test_words_emit_right_to_left(self) -> None:
        from uiua_jax import Array, compile
        from uiua_jax.bytecode import CallPrimitive, PushConstant
        from uiua_jax.primitives import Prim

        program = compile("+ 1 2")
        self.assertEqual(program.instructions, (PushConstant(0), PushConstant(1), CallPrimitive(Prim.ADD)))
        self.assertEqual(program.constants, (Array.number(2), Array.number(1)))
        self.assertEqual([instr.span for instr in program.instructions], [(4, 5), (2, 3), (0, 1)])

    def test_literal_arrays_fold_into_one_constant(self) -> None:
        from uiua_jax import Array, compile
        from uiua_jax.bytecode import PushConstant

        cases = {
            "[1 2 3]": Array.numbers([1, 2, 3]),
            "1_2_3": Array.numbers([1, 2, 3]),
            "[1_2 3_4]": Array.numbers([1, 2, 3, 4], shape=(2, 2)),
            '"ab"': Array.string("ab"),
            "{1 2}": Array.boxes([Array.number(1), Array.number(2)]),
        }
        for source, constant in cases.items():
            with self.subTest(source=source):
                program = compile(source)
                self.assertEqual(program.instructions, (PushConstant(0),))
                self.assertEqual(program.constants, (constant,))

    def test_computed_array_literals_collect_at_run_time(self) -> None:
        from uiua_jax import compile
        from uiua_jax.bytecode import CallPrimitive, MakeArray, MarkArray, PushConstant
        from uiua_jax.primitives import Prim

        program = compile("[× 2 3 4]")
        self.assertEqual(
            program.instructions,
            (
                MarkArray(),
                PushConstant(0),
                PushConstant(1),
                PushConstant(2),
                CallPrimitive(Prim.MUL),
                MakeArray(2),
            ),
        )

    def test_array_literal_counts_values_taken_from_beneath(self) -> None:
        from uiua_jax import compile
        from uiua_jax.bytecode import MakeArray

        cases = {"[+1]": MakeArray(1), "[.]": MakeArray(2), "[;]": MakeArray(0), "{+1}": MakeArray(1, boxed=True)}
        for source, make in cases.items():
            with self.subTest(source=source):
                self.assertEqual(compile(source).instructions[-1], make)
        self.assertEqual(compile("[! (+1)]").instructions[-1], MakeArray(None))

    def test_rebinding_gives_each_definition_its_own_slot(self) -> None:
        from uiua_jax import compile
        from uiua_jax.bytecode import Bind, LoadBinding

        program = compile("X ← 1\nX\nX ← 2\nX")
        binds = [instr for instr in program.instructions if isinstance(instr, Bind)]
        loads = [instr for instr in program.instructions if isinstance(instr, LoadBinding)]
        self.assertEqual([bind.slot for bind in binds], [load.slot for load in loads])
        self.assertNotEqual(binds[0].slot, binds[1].slot)

    def test_ragged_literal_is_left_for_run_time(self) -> None:
        from uiua_jax import compile
        from uiua_jax.bytecode import MakeArray

        program = compile("[1 [2 3]]")
        self.assertEqual(program.instructions[-1], MakeArray(2))

    def test_if_compiles_to_inline_branches(self) -> None:
        from uiua_jax import compile
        from uiua_jax.bytecode import Branch, BranchIfZero, PushConstant

        program = compile("?1 2 0")
        self.assertEqual(
            program.instructions,
            (PushConstant(0), BranchIfZero(4), PushConstant(1), Branch(5), PushConstant(2)),
        )

    def test_value_and_function_bindings(self) -> None:
        from uiua_jax import compile
        from uiua_jax.bytecode import Bind, CallFunction, LoadBinding, PushConstant, PushFunction

        value = compile("X ← 5\nX X")
        self.assertEqual(
            value.instructions,
            (PushConstant(0), Bind("X", 0), LoadBinding("X", 0), LoadBinding("X", 0)),
        )

        function = compile("F ← +1\nF 2")
        self.assertEqual(
            function.instructions,
            (PushFunction(0), Bind("F", 0), PushConstant(0), CallFunction("F", 0)),
        )
        self.assertEqual(function.functions[0].name, "F")

        wrapped = compile("F ← (5)\nF")
        self.assertIsInstance(wrapped.instructions[0], PushFunction)

    def test_compile_cache(self) -> None:
        from uiua_jax import clear_compile_cache, compile, parse

        first = compile("+ 1 2")
        self.assertIs(compile("+ 1 2"), first)
        clear_compile_cache()
        self.assertIsNot(compile("+ 1 2"), first)
        self.assertEqual(compile(parse("+ 1 2")).instructions, first.instructions)

    def test_disassemble_lists_instructions(self) -> None:
        from uiua_jax import compile

        text = compile("F ← +1\nF 2").disassemble()
        self.assertIn("main |0.1", text)
        self.assertIn("call + (add)", text)
        self.assertIn("bind F", text)
        self.assertIn("function 0:", text)

    def test_compile_logs_debug_record(self) -> None:
        from uiua_jax import compile, parse

        with self.assertLogs("uiua_jax.compiler", level="DEBUG") as logs:
            compile(parse("+ 1 2"))
        self.assertTrue(any("signature |0.1" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
