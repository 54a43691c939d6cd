"""Tokenizer tests: instruction patterns, nesting and error tokens."""

import unittest

from instructions import (
    Append,
    BoolOp,
    Copy,
    ErrorInstruction,
    Execute,
    Finish,
    GetInput,
    IfStatement,
    Instruction,
    Loop,
    MathOp,
    Negate,
    PrintStr,
    PrintVar,
    ResetAll,
    ResetVar,
    SaveNumber,
    SaveStr,
    UnlessStatement,
    WhileLoop,
)
from lexer import MAX_NESTING_DEPTH, Lexer


def tokenize(source):
    return Lexer(source).tokenize()


class TestLexer(unittest.TestCase):

    def test_tokens_parse_correctly(self):
        tokens = tokenize("Sa4.4 Cab P'hello world' Pa i ! This is a comment")
        self.assertEqual(len(tokens), 5)

        self.assertIsInstance(tokens[0], SaveNumber)
        self.assertEqual((tokens[0].var, tokens[0].number), ("a", 4.4))
        self.assertEqual(tokens[0].text, "Sa4.4")

        self.assertIsInstance(tokens[1], Copy)
        self.assertEqual((tokens[1].source, tokens[1].target), ("a", "b"))
        self.assertEqual(tokens[1].text, "Cab")

        self.assertIsInstance(tokens[2], PrintStr)
        self.assertEqual(tokens[2].text_value, "hello world")
        self.assertEqual(tokens[2].text, "P'hello world'")

        self.assertIsInstance(tokens[3], PrintVar)
        self.assertEqual(tokens[3].var, "a")

        self.assertIsInstance(tokens[4], ErrorInstruction)
        self.assertEqual(tokens[4].text, "i")

    def test_numbers(self):
        tokens = tokenize("Sa5 Sb-6.5 Sc0.25")
        self.assertEqual([t.number for t in tokens], [5.0, -6.5, 0.25])

    def test_save_string(self):
        (token,) = tokenize("Sz'This is a test'")
        self.assertIsInstance(token, SaveStr)
        self.assertEqual(token.var, "z")
        self.assertEqual(token.text_value, "This is a test")

    def test_empty_string_literal(self):
        (token,) = tokenize("Sr''")
        self.assertIsInstance(token, SaveStr)
        self.assertEqual(token.text_value, "")

    def test_operations(self):
        math_op, bool_op, append = tokenize("MRcab BXcab Arc")
        self.assertIsInstance(math_op, MathOp)
        self.assertEqual((math_op.op, math_op.target, math_op.a, math_op.b), ("R", "c", "a", "b"))
        self.assertIsInstance(bool_op, BoolOp)
        self.assertEqual(bool_op.op, "X")
        self.assertIsInstance(append, Append)
        self.assertEqual((append.target, append.source), ("r", "c"))

    def test_invalid_operator_codes(self):
        tokens = tokenize("MZabc BMabc")
        self.assertEqual(len(tokens), 2)
        self.assertIsInstance(tokens[0], ErrorInstruction)
        self.assertEqual(tokens[0].text, "MZabc")
        self.assertIn("math op", tokens[0].reason)
        self.assertIsInstance(tokens[1], ErrorInstruction)
        self.assertIn("bool op", tokens[1].reason)

    def test_reset_and_simple_instructions(self):
        tokens = tokenize("RA Ra Nb F")
        self.assertIsInstance(tokens[0], ResetAll)
        self.assertIsInstance(tokens[1], ResetVar)
        self.assertEqual(tokens[1].var, "a")
        self.assertIsInstance(tokens[2], Negate)
        self.assertIsInstance(tokens[3], Finish)

    def test_get_input(self):
        number, text, bad = tokenize("GNa0 GSb1.7 GXa0")
        self.assertIsInstance(number, GetInput)
        self.assertEqual((number.op, number.var, number.index), ("N", "a", 0.0))
        self.assertEqual((text.op, text.index), ("S", 1.7))
        self.assertIsInstance(bad, ErrorInstruction)

    def test_execute(self):
        call, bare = tokenize("Xfaebgcz Xc")
        self.assertIsInstance(call, Execute)
        self.assertEqual((call.var, call.argmap), ("f", "aebgcz"))
        self.assertEqual(bare.argmap, "")

    def test_execute_with_odd_parameters(self):
        (token,) = tokenize("Xfa")
        self.assertIsInstance(token, ErrorInstruction)
        self.assertEqual(token.text, "Xfa")

    def test_nested_instructions(self):
        loop, cond, unless, while_loop = tokenize("LaPb IaP'x y' UcF WaMSaab")
        self.assertIsInstance(loop, Loop)
        self.assertEqual(loop.var, "a")
        self.assertIsInstance(loop.body, PrintVar)
        self.assertEqual(loop.text, "LaPb")

        self.assertIsInstance(cond, IfStatement)
        self.assertIsInstance(cond.body, PrintStr)
        self.assertEqual(cond.body.text_value, "x y")
        self.assertEqual(cond.text, "IaP'x y'")

        self.assertIsInstance(unless, UnlessStatement)
        self.assertIsInstance(unless.body, Finish)

        self.assertIsInstance(while_loop, WhileLoop)
        self.assertIsInstance(while_loop.body, MathOp)
        self.assertEqual(while_loop.body.op, "S")

    def test_doubly_nested(self):
        (token,) = tokenize("LaIbPc")
        self.assertIsInstance(token, Loop)
        self.assertIsInstance(token.body, IfStatement)
        self.assertIsInstance(token.body.body, PrintVar)
        self.assertEqual(token.body.text, "IbPc")

    def test_nested_body_is_one_instruction(self):
        loop, after = tokenize("LaPbPc")
        self.assertIsInstance(loop, Loop)
        self.assertEqual(loop.text, "LaPb")
        self.assertIsInstance(after, PrintVar)
        self.assertEqual(after.var, "c")

    def test_nested_without_body(self):
        tokens = tokenize("Ia Pb")
        self.assertIsInstance(tokens[0], ErrorInstruction)
        self.assertEqual(tokens[0].text, "Ia")
        self.assertIsInstance(tokens[1], PrintVar)

        (token,) = tokenize("Wa")
        self.assertIsInstance(token, ErrorInstruction)

    def test_nested_error_body(self):
        (token,) = tokenize("Lai")
        self.assertIsInstance(token, ErrorInstruction)
        self.assertEqual(token.text, "Lai")

    def test_nesting_depth_is_capped(self):
        tokens = tokenize("Ia" * 600 + "Pb")
        self.assertIsInstance(tokens[0], ErrorInstruction)
        self.assertIn("Instruction nesting too deep", tokens[0].reason)
        self.assertEqual(tokens[0].reason.count("Invalid nested instruction"), 1)
        self.assertTrue(all(isinstance(t, Instruction) for t in tokens))

    def test_nesting_below_cap(self):
        (token,) = tokenize("Ia" * MAX_NESTING_DEPTH + "Pb")
        depth = 0
        while isinstance(token, IfStatement):
            token = token.body
            depth += 1
        self.assertEqual(depth, MAX_NESTING_DEPTH)
        self.assertIsInstance(token, PrintVar)

    def test_comments_and_whitespace(self):
        tokens = tokenize("! whole line comment\n\tPa ! trailing\r\n  Pb")
        self.assertEqual([t.var for t in tokens], ["a", "b"])

    def test_locations(self):
        first, second = tokenize("Pa\n  Pb")
        self.assertEqual((first.location.line, first.location.column), (1, 1))
        self.assertEqual((second.location.line, second.location.column), (2, 3))
        self.assertEqual(second.location.file, "<string>")

    def test_tokens_are_lazy(self):
        stream = Lexer("Pa Pb").tokens()
        self.assertEqual(next(stream).var, "a")
        self.assertEqual(next(stream).var, "b")
        with self.assertRaises(StopIteration):
            next(stream)

    def test_unknown_characters(self):
        tokens = tokenize("? Sa")
        self.assertIsInstance(tokens[0], ErrorInstruction)
        self.assertIn("Unrecognized", tokens[0].reason)
        self.assertIsInstance(tokens[1], ErrorInstruction)
        self.assertIn("Malformed", tokens[1].reason)


if __name__ == "__main__":
    unittest.main()
