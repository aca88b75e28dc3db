import unittest

import rustic.rustic_ast as ast
from rustic.errors import (
    ArityError, DuplicateDeclarationError, RecursiveStructError,
    TypeMismatchError, UnknownFieldError, UnresolvedNameError,
)
from rustic.parser import Parser
from rustic.stdlib_map import default_table
from rustic.symbol_table import SymbolKind
from rustic.type_checker import TypeChecker


class TypeCheckerTestCase(unittest.TestCase):
    def setUp(self):
        self.parser = Parser()

    def check(self, source):
        module = self.parser.parse(source, module_name="test", file_path="test.rsc")
        checker = TypeChecker(default_table())
        symbols = checker.check_module(module)
        return module, symbols

    def check_error(self, source, error_class):
        with self.assertRaises(error_class) as ctx:
            self.check(source)
        return ctx.exception


class TestTypeResolution(TypeCheckerTestCase):
    def test_expression_types(self):
        module, _ = self.check("""
            struct P { x: float, name: string }
            fn f(p: P, n: int) -> bool {
                let a = n * 2 + 1;
                let b = p.x / 2.0;
                let c = p.name == "q";
                return a > 0 && !c;
            }
        """)
        stmts = module.functions[0].body.statements
        self.assertEqual(stmts[0].type, ast.INT)
        self.assertEqual(stmts[1].type, ast.FLOAT)
        self.assertEqual(stmts[2].type, ast.BOOL)
        self.assertEqual(stmts[3].value.type, ast.BOOL)

    def test_every_expression_is_typed(self):
        module, _ = self.check("""
            import math;
            struct P { x: float }
            fn f(p: P) -> float { return math.sqrt(p.x) + P { x: 1.0 }.x; }
        """)
        for node in module.walk():
            if isinstance(node, ast.Expression):
                self.assertIsNotNone(node.type, node)

    def test_int_widens_to_float(self):
        module, _ = self.check("fn f() -> float { let x: float = 1; return x; }")
        let = module.functions[0].body.statements[0]
        self.assertTrue(let.initializer.widened)
        self.assertEqual(let.type, ast.FLOAT)

    def test_identifiers_resolve_to_declarations(self):
        module, symbols = self.check("fn f(a: int) -> int { let b = a; return b; }")
        fn = module.functions[0]
        let = fn.body.statements[0]
        self.assertEqual(let.initializer.symbol_id, fn.params[0].symbol_id)
        self.assertEqual(fn.body.statements[1].value.symbol_id, let.symbol_id)
        self.assertIs(symbols.symbol(let.symbol_id).kind, SymbolKind.LOCAL)
        self.assertIs(symbols.symbol(fn.params[0].symbol_id).kind, SymbolKind.PARAM)

    def test_shadowing_in_nested_block(self):
        module, _ = self.check("""
            fn f() -> string {
                let v = 1;
                { let v = "inner"; }
                return "x";
            }
        """)
        outer = module.functions[0].body.statements[0]
        inner = module.functions[0].body.statements[1].statements[0]
        self.assertEqual(outer.type, ast.INT)
        self.assertEqual(inner.type, ast.STRING)

    def test_recursive_and_mutually_recursive_functions(self):
        module, _ = self.check("""
            fn even(n: int) -> bool { if n == 0 { return true; } return odd(n - 1); }
            fn odd(n: int) -> bool { if n == 0 { return false; } return even(n - 1); }
        """)
        call = module.functions[0].body.statements[1].value
        self.assertEqual(call.target_kind, 'function')
        self.assertEqual(call.type, ast.BOOL)

    def test_nested_structs(self):
        module, _ = self.check("""
            struct Line { a: Point, b: Point }
            struct Point { x: float, y: float }
            fn f(l: Line) -> float { return l.a.x; }
        """)
        self.assertEqual(module.functions[0].body.statements[0].value.type, ast.FLOAT)

    def test_builtin_call_records_entry(self):
        module, _ = self.check("import io; fn f() { io.println(\"hi\"); }")
        call = module.functions[0].body.statements[0].expr
        self.assertEqual(call.target_kind, 'builtin')
        self.assertEqual(call.builtin.qualified_name, "io.println")
        self.assertEqual(call.type, ast.VOID)

    def test_aliased_builtin_module(self):
        module, _ = self.check("import math as m; fn f() -> float { return m.sqrt(2.0); }")
        call = module.functions[0].body.statements[0].value
        self.assertEqual(call.builtin.qualified_name, "math.sqrt")

    def test_unmapped_builtin_is_left_unresolved(self):
        module, _ = self.check("import math; fn f() -> float { return math.cbrt(8.0); }")
        call = module.functions[0].body.statements[0].value
        self.assertEqual(call.target_kind, 'builtin')
        self.assertIsNone(call.builtin)
        self.assertIsInstance(call.type, ast.UnresolvedType)


class TestResolverErrors(TypeCheckerTestCase):
    def test_unresolved_identifier(self):
        error = self.check_error("fn f() -> int {\n    return 1 + foo;\n}", UnresolvedNameError)
        self.assertEqual(error.name, "foo")
        self.assertEqual((error.location.line, error.location.column), (2, 16))

    def test_int_plus_string(self):
        error = self.check_error('fn f() { let v = 1 + "a"; }', TypeMismatchError)
        self.assertEqual(error.expected, "int")
        self.assertEqual(error.found, "string")

    def test_mixed_numeric_operands(self):
        self.check_error("fn f() { let v = 1 + 2.0; }", TypeMismatchError)

    def test_condition_must_be_bool(self):
        error = self.check_error("fn f() { if 1 { } }", TypeMismatchError)
        self.assertEqual(error.expected, "bool")

    def test_float_does_not_narrow_to_int(self):
        self.check_error("fn f() { let x: int = 1.5; }", TypeMismatchError)

    def test_missing_return(self):
        error = self.check_error("fn f(a: bool) -> int { if a { return 1; } }", TypeMismatchError)
        self.assertIn("every path", error.message)

    def test_return_value_from_void_function(self):
        self.check_error("fn f() { return 1; }", TypeMismatchError)

    def test_void_value_cannot_be_bound(self):
        self.check_error("fn g() {} fn f() { let x = g(); }", TypeMismatchError)

    def test_duplicate_local(self):
        error = self.check_error("fn f() { let a = 1; let a = 2; }", DuplicateDeclarationError)
        self.assertTrue(error.notes)

    def test_duplicate_function(self):
        self.check_error("fn f() {} fn f() {}", DuplicateDeclarationError)

    def test_struct_and_function_share_names(self):
        self.check_error("struct f { a: int } fn f() {}", DuplicateDeclarationError)

    def test_duplicate_field(self):
        self.check_error("struct P { x: int, x: int }", DuplicateDeclarationError)

    def test_unknown_field(self):
        self.check_error("struct P { x: int } fn f(p: P) -> int { return p.y; }", UnknownFieldError)

    def test_unknown_field_in_literal(self):
        self.check_error("struct P { x: int } fn f() { let p = P { x: 1, z: 2 }; }",
                         UnknownFieldError)

    def test_missing_field_in_literal(self):
        self.check_error("struct P { x: int, y: int } fn f() { let p = P { x: 1 }; }",
                         TypeMismatchError)

    def test_unknown_type(self):
        error = self.check_error("fn f(p: Pointt) {}", UnresolvedNameError)
        self.assertEqual(error.name, "Pointt")

    def test_unknown_struct_literal(self):
        self.check_error("fn f() { let p = Nope { }; }", UnresolvedNameError)

    def test_wrong_arity(self):
        error = self.check_error("fn g(a: int) {} fn f() { g(1, 2); }", ArityError)
        self.assertEqual((error.expected, error.found), (1, 2))

    def test_wrong_builtin_arity(self):
        error = self.check_error("import math; fn f() -> float { return math.sqrt(1.0, 2.0); }",
                                 ArityError)
        self.assertEqual(error.expected, 1)

    def test_argument_type_mismatch(self):
        self.check_error('fn g(a: int) {} fn f() { g("x"); }', TypeMismatchError)

    def test_module_must_be_imported(self):
        self.check_error("fn f() -> float { return math.sqrt(1.0); }", UnresolvedNameError)

    def test_calling_a_variable(self):
        self.check_error("fn f(a: int) { a(); }", TypeMismatchError)

    def test_function_used_as_value(self):
        self.check_error("fn g() {} fn f() { let x = g; }", TypeMismatchError)

    def test_recursive_struct(self):
        error = self.check_error("struct Node { next: Node }", RecursiveStructError)
        self.assertEqual(error.cycle, ["Node", "Node"])

    def test_mutually_recursive_structs(self):
        error = self.check_error("struct A { b: B } struct B { a: A }", RecursiveStructError)
        self.assertEqual(error.cycle, ["A", "B", "A"])

    def test_void_field(self):
        self.check_error("struct P { x: void }", TypeMismatchError)


if __name__ == '__main__':
    unittest.main()
