from __future__ import annotations

import importlib.util
import unittest


JAX_AVAILABLE = importlib.util.find_spec("jax") is not None


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for runtime value-model tests")
class RuntimeValueModelTests(unittest.TestCase):
    def test_buffer_must_fit_shape(self) -> None:
        from uiua_jax import Array, ElementKind

        with self.assertRaises(ValueError):
            Array(ElementKind.NUMBER, (2, 2), [1, 2, 3])
        with self.assertRaises(ValueError):
            Array(ElementKind.NUMBER, (-1,), [])
        with self.assertRaises(TypeError):
            Array(ElementKind.BOX, (1,), [1])

    def test_rows_and_shape_properties(self) -> None:
        from uiua_jax import Array

        array = Array.numbers(range(6), shape=(2, 3))
        self.assertEqual(array.rank, 2)
        self.assertEqual(array.size, 6)
        self.assertEqual(array.row_count, 2)
        self.assertEqual(array.row_shape, (3,))
        self.assertEqual([row.to_python() for row in array.rows()], [[0, 1, 2], [3, 4, 5]])
        self.assertEqual(array.row(1).to_python(), [3, 4, 5])
        self.assertTrue(Array.number(1).is_scalar)
        self.assertEqual(Array.number(1).row_count, 1)

    def test_reshape_without_resize_shares_the_buffer(self) -> None:
        from uiua_jax import Array

        array = Array.numbers([1, 2, 3, 4])
        square = array.reshaped((2, 2))
        self.assertIs(square.data, array.data)
        self.assertIs(square.deshaped().data, array.data)
        self.assertIs(array.reshaped((4,)), array)

    def test_copy_on_write_update(self) -> None:
        from uiua_jax import Array, evaluate

        original = Array.numbers([1, 2, 3])
        alias = original
        view = original.reshaped((3, 1))
        updated = original.with_flat_update(0, Array.number(9))

        self.assertEqual(updated.to_python(), [9, 2, 3])
        self.assertEqual(original.to_python(), [1, 2, 3])
        self.assertEqual(alias.to_python(), [1, 2, 3])
        self.assertEqual(view.to_python(), [[1], [2], [3]])

        evaluate("⇌", original)
        evaluate("⊂ 0", original)
        self.assertEqual(original.to_python(), [1, 2, 3])

    def test_copy_on_write_update_of_boxes_and_kinds(self) -> None:
        from uiua_jax import Array, ElementKind

        boxes = Array.boxes([Array.number(1), Array.string("a")])
        replaced = boxes.with_flat_update(1, Array.box(Array.number(2)))
        self.assertEqual(boxes.to_python(), [1, "a"])
        self.assertEqual(replaced.to_python(), [1, 2])

        flags = Array(ElementKind.BYTE, (2,), [0, 1])
        widened = flags.with_flat_update(0, Array.number(2.5))
        self.assertEqual(widened.kind, ElementKind.NUMBER)
        self.assertEqual(widened.to_python(), [2.5, 1])
        self.assertEqual(flags.kind, ElementKind.BYTE)

        with self.assertRaises(Exception):
            flags.with_flat_update(5, Array.number(1))

    def test_match_and_equality(self) -> None:
        from uiua_jax import Array, ElementKind
        from uiua_jax.values import match

        self.assertTrue(match(Array.numbers([1, 2]), Array(ElementKind.BYTE, (2,), [1, 2])))
        self.assertFalse(match(Array.numbers([1, 2]), Array.numbers([1, 2], shape=(2, 1))))
        self.assertFalse(match(Array.string("a"), Array.number(97)))
        self.assertEqual(Array.numbers([float("nan")]), Array.numbers([float("nan")]))
        self.assertEqual(len({Array.number(1), Array.byte(1)}), 1)

    def test_kinds_do_not_mix_without_boxes(self) -> None:
        from uiua_jax import RuntimeErrorKind, UiuaRuntimeError, evaluate

        with self.assertRaises(UiuaRuntimeError) as ctx:
            evaluate('⊂ 1 "ab"')
        self.assertEqual(ctx.exception.kind, RuntimeErrorKind.TYPE_MISMATCH)
        self.assertEqual(ctx.exception.kinds, ("char", "number"))

    def test_byte_and_number_kinds(self) -> None:
        from uiua_jax import ElementKind, evaluate

        cases = {
            "= 1 1": ElementKind.BYTE,
            "⌵ = 1 1": ElementKind.BYTE,
            "¬ = 1 1": ElementKind.NUMBER,
            "+ = 1 1 = 1 1": ElementKind.NUMBER,
            "∊ 1 [1 2]": ElementKind.BYTE,
            "≍ 1 1": ElementKind.BYTE,
            "⊂ = 1 1 2": ElementKind.NUMBER,
        }
        for source, kind in cases.items():
            with self.subTest(source=source):
                (value,) = evaluate(source)
                self.assertEqual(value.kind, kind)

    def test_character_arithmetic(self) -> None:
        from uiua_jax import ElementKind, evaluate

        cases = [
            ("+ 1 @a", "b", ElementKind.CHAR),
            ("+ @a 1", "b", ElementKind.CHAR),
            ("- 1 @b", "a", ElementKind.CHAR),
            ("- @a @c", 2, ElementKind.NUMBER),
            ('+ 1 "abc"', "bcd", ElementKind.CHAR),
            ("↥ @a @b", "b", ElementKind.CHAR),
            ("= @a @a", 1, ElementKind.BYTE),
            ("< @a 1", 1, ElementKind.BYTE),
            ("> @a 1", 0, ElementKind.BYTE),
        ]
        for source, expected, kind in cases:
            with self.subTest(source=source):
                (value,) = evaluate(source)
                self.assertEqual(value.kind, kind)
                self.assertEqual(value.to_python(), expected)

    def test_character_type_errors(self) -> None:
        from uiua_jax import RuntimeErrorKind, UiuaRuntimeError, evaluate

        for source in ("- @a 1", "× 2 @a", "¯ @a", "+ @a @b"):
            with self.subTest(source=source):
                with self.assertRaises(UiuaRuntimeError) as ctx:
                    evaluate(source)
                self.assertEqual(ctx.exception.kind, RuntimeErrorKind.TYPE_MISMATCH)

    def test_pervasive_functions_recurse_into_boxes(self) -> None:
        from uiua_jax import ElementKind, evaluate

        (value,) = evaluate("+ 1 □ [1 2]")
        self.assertEqual(value.kind, ElementKind.BOX)
        self.assertEqual(value.unboxed().to_python(), [2, 3])

        (value,) = evaluate("¯ {1 [2 3]}")
        self.assertEqual(value.kind, ElementKind.BOX)
        self.assertEqual(value.to_python(), [-1, [-2, -3]])

    def test_sorting_orders_numbers_before_characters_before_boxes(self) -> None:
        from uiua_jax import evaluate

        (value,) = evaluate('⍆ {"b" 2 □1 "a"}')
        self.assertEqual(value.to_python(), [2, "a", "b", 1])

    def test_external_representation(self) -> None:
        from uiua_jax import Array, ElementKind, ExternalArray

        numbers = Array.numbers([1, 2, 3, 4], shape=(2, 2))
        self.assertEqual(numbers.to_external(), ExternalArray("number", (2, 2), (1.0, 2.0, 3.0, 4.0)))

        boxed = Array.box(Array.string("hi"))
        self.assertEqual(
            boxed.to_external(),
            ExternalArray("box", (), (ExternalArray("char", (2,), ("h", "i")),)),
        )

        flags = Array.from_external(ExternalArray("byte", (3,), (1, 0, 1)))
        self.assertEqual(flags.kind, ElementKind.BYTE)
        self.assertEqual(flags.to_python(), [1, 0, 1])

        self.assertEqual(Array.from_external(boxed.to_external()), boxed)

    def test_python_conversion(self) -> None:
        from uiua_jax import Array, ElementKind, RuntimeErrorKind, UiuaRuntimeError

        self.assertEqual(Array.from_python([[1, 2], [3, 4]]).shape, (2, 2))
        self.assertEqual(Array.from_python("hi").kind, ElementKind.CHAR)
        self.assertEqual(Array.from_python("h").shape, ())
        self.assertEqual(Array.from_python(True).kind, ElementKind.BYTE)
        self.assertEqual(Array.from_python([]).shape, (0,))
        self.assertEqual(Array.from_python(["ab", "cd"]).to_python(), ["ab", "cd"])

        with self.assertRaises(UiuaRuntimeError) as ctx:
            Array.from_python([[1], [2, 3]])
        self.assertEqual(ctx.exception.kind, RuntimeErrorKind.SHAPE_MISMATCH)
        with self.assertRaises(TypeError):
            Array.from_python(object())

    def test_scalar_extraction_requirements(self) -> None:
        from uiua_jax import Array, RuntimeErrorKind, UiuaRuntimeError

        self.assertEqual(Array.number(3).as_nat("n"), 3)
        self.assertEqual(Array.numbers([1, -2]).as_integers("n"), [1, -2])
        self.assertEqual(Array.string("ok").as_string("s"), "ok")
        cases = [
            (lambda: Array.numbers([1, 2]).as_num("n"), RuntimeErrorKind.SHAPE_MISMATCH),
            (lambda: Array.number(-1).as_nat("n"), RuntimeErrorKind.TYPE_MISMATCH),
            (lambda: Array.number(0.5).as_int("n"), RuntimeErrorKind.TYPE_MISMATCH),
            (lambda: Array.char("a").as_num("n"), RuntimeErrorKind.TYPE_MISMATCH),
            (lambda: Array.number(1).as_string("s"), RuntimeErrorKind.TYPE_MISMATCH),
        ]
        for index, (call, kind) in enumerate(cases):
            with self.subTest(case=index):
                with self.assertRaises(UiuaRuntimeError) as ctx:
                    call()
                self.assertEqual(ctx.exception.kind, kind)


if __name__ == "__main__":
    unittest.main()
