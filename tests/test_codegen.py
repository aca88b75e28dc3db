import unittest

from rustic.codegen import escape_string, float_literal, rust_ident
from rustic.compiler import compile_source
from rustic.errors import UnknownBuiltinError
from rustic.stdlib_map import MappingTable


def body_lines(output, fn_name):
    """Lines of the generated function `fn_name`, without indentation"""
    lines = output.splitlines()
    start = next(i for i, line in enumerate(lines) if line.startswith(f"pub fn {fn_name}("))
    end = lines.index("}", start)
    return [line.strip() for line in lines[start:end + 1]]


class TestRustNames(unittest.TestCase):
    def test_rust_ident(self):
        self.assertEqual(rust_ident("total"), "total")
        self.assertEqual(rust_ident("type"), "r#type")
        self.assertEqual(rust_ident("match"), "r#match")
        self.assertEqual(rust_ident("self"), "self_")
        self.assertEqual(rust_ident("crate"), "crate_")
        self.assertEqual(rust_ident("String"), "String_")
        self.assertEqual(rust_ident("usize"), "usize_")

    def test_escape_string(self):
        self.assertEqual(escape_string('say "hi"\n'), 'say \\"hi\\"\\n')
        self.assertEqual(escape_string("back\\slash\t"), "back\\\\slash\\t")
        self.assertEqual(escape_string("\x01"), "\\u{1}")
        self.assertEqual(escape_string("héllo"), "héllo")

    def test_float_literal(self):
        self.assertEqual(float_literal(1.0), "1.0")
        self.assertEqual(float_literal(2.5), "2.5")
        self.assertEqual(float_literal(1e300), "1e+300")
        self.assertEqual(float_literal(float("inf")), "f64::INFINITY")


class TestCodeGenerator(unittest.TestCase):
    def compile(self, source, **kwargs):
        return compile_source(source, "test", file_path="test.rsc", **kwargs).output

    def test_header_and_struct(self):
        output = self.compile("struct Person { name: string, age: int, tall: bool, h: float }")
        self.assertTrue(output.startswith("// Generated by rustic from module `test`."))
        self.assertIn(
            "#[derive(Debug, Clone, PartialEq)]\n"
            "pub struct Person {\n"
            "    pub name: String,\n"
            "    pub age: i64,\n"
            "    pub tall: bool,\n"
            "    pub h: f64,\n"
            "}\n",
            output,
        )

    def test_empty_struct(self):
        output = self.compile("struct Unit {} fn make() -> Unit { return Unit {}; }")
        self.assertIn("pub struct Unit {}", output)
        self.assertIn("return Unit {};", output)

    def test_parameter_modes(self):
        output = self.compile("""
            struct P { x: int }
            fn read(p: P) -> int { return p.x; }
            fn write(p: P) { p.x = 1; }
            fn take(p: P) -> P { return p; }
            fn again(p: P, n: int) -> P { p = P { x: n }; return p; }
        """)
        self.assertIn("pub fn read(p: &P) -> i64 {", output)
        self.assertIn("pub fn write(p: &mut P) {", output)
        self.assertIn("pub fn take(p: P) -> P {", output)
        self.assertIn("pub fn again(mut p: P, n: i64) -> P {", output)

    def test_call_sites(self):
        output = self.compile("""
            struct P { x: int }
            fn read(p: P) -> int { return p.x; }
            fn write(p: P) { p.x = 1; }
            fn take(p: P) -> P { return p; }
            fn main() {
                let p = P { x: 1 };
                let a = read(p);
                write(p);
                let q = take(p);
                let r = take(p);
            }
        """)
        self.assertEqual(body_lines(output, "main"), [
            "pub fn main() {",
            "let mut p: P = P { x: 1 };",
            "let a: i64 = read(&p);",
            "write(&mut p);",
            "let q: P = take(p.clone());",
            "let r: P = take(p);",
            "}",
        ])

    def test_reference_params_pass_through(self):
        output = self.compile("""
            struct P { x: int }
            fn read(p: P) -> int { return p.x; }
            fn write(p: P) { p.x = 1; }
            fn take(p: P) -> P { return p; }
            fn outer(a: P, b: P) -> int {
                let n = read(a);
                write(b);
                let c = take(a);
                return a.x + c.x;
            }
        """)
        self.assertEqual(body_lines(output, "outer"), [
            "pub fn outer(a: &P, b: &mut P) -> i64 {",
            "let n: i64 = read(a);",
            "write(b);",
            "let c: P = take(a.clone());",
            "return a.x + c.x;",
            "}",
        ])

    def test_field_reads_clone_non_copy_values(self):
        output = self.compile("""
            struct Person { name: string, age: int }
            fn name_of(p: Person) -> string { return p.name; }
            fn age_of(p: Person) -> int { return p.age; }
        """)
        self.assertIn("return p.name.clone();", output)
        self.assertIn("return p.age;", output)

    def test_equality_compares_references(self):
        output = self.compile("""
            struct P { x: int }
            fn same(a: P, b: P) -> bool { return a == b; }
            fn local(a: P) -> bool {
                let b = P { x: 1 };
                return a != b;
            }
            fn names(a: string) -> bool { return a == "x"; }
            fn ints(a: int, b: int) -> bool { return a == b; }
        """)
        self.assertIn("return a == b;", body_lines(output, "same"))
        self.assertIn("return a != &b;", body_lines(output, "local"))
        self.assertIn('return a == &String::from("x");', body_lines(output, "names"))
        self.assertIn("return a == b;", body_lines(output, "ints"))

    def test_parenthesization(self):
        output = self.compile("""
            fn f(a: int, b: int, c: int, d: bool) -> bool {
                let x = (a + b) * c;
                let y = a - (b - c);
                let z = -(a + b);
                let w = a * b + c;
                let v = !(d && d);
                return (a < b) == d;
            }
        """)
        lines = body_lines(output, "f")
        self.assertIn("let x: i64 = (a + b) * c;", lines)
        self.assertIn("let y: i64 = a - (b - c);", lines)
        self.assertIn("let z: i64 = -(a + b);", lines)
        self.assertIn("let w: i64 = a * b + c;", lines)
        self.assertIn("let v: bool = !(d && d);", lines)
        self.assertIn("return (a < b) == d;", lines)

    def test_widening(self):
        output = self.compile("""
            fn half(v: float) -> float { return v / 2.0; }
            fn f(n: int) -> float {
                let x: float = n;
                return half(n + 1);
            }
        """)
        lines = body_lines(output, "f")
        self.assertIn("let x: f64 = (n as f64);", lines)
        self.assertIn("return half(((n + 1) as f64));", lines)

    def test_literals(self):
        output = self.compile("""
            fn f() {
                let s = "tab\\there \\"q\\"";
                let big = 3000000000;
                let small = 7;
                let e = 1e3;
                let t = true;
            }
        """)
        lines = body_lines(output, "f")
        self.assertIn('let s: String = String::from("tab\\there \\"q\\"");', lines)
        self.assertIn("let big: i64 = 3000000000_i64;", lines)
        self.assertIn("let small: i64 = 7;", lines)
        self.assertIn("let e: f64 = 1000.0;", lines)
        self.assertIn("let t: bool = true;", lines)

    def test_control_flow(self):
        output = self.compile("""
            fn sign(n: int) -> int {
                if n < 0 {
                    return -1;
                } else if n == 0 {
                    return 0;
                } else {
                    let i = n;
                    while i > 1 {
                        i = i - 1;
                    }
                    { let j = i; }
                    return i;
                }
            }
        """)
        self.assertEqual(body_lines(output, "sign"), [
            "pub fn sign(n: i64) -> i64 {",
            "if n < 0 {",
            "return -1;",
            "} else if n == 0 {",
            "return 0;",
            "} else {",
            "let mut i: i64 = n;",
            "while i > 1 {",
            "i = i - 1;",
            "}",
            "{",
            "let j: i64 = i;",
            "}",
            "return i;",
            "}",
            "}",
        ])
        self.assertIn("        {\n            let j: i64 = i;\n        }\n", output)

    def test_raw_identifiers(self):
        output = self.compile("""
            struct Pair { type: int }
            fn impl(type: int, self: int) -> Pair { return Pair { type: type + self }; }
        """)
        self.assertIn("pub r#type: i64,", output)
        self.assertIn("pub fn r#impl(r#type: i64, self_: i64) -> Pair {", output)
        self.assertIn("return Pair { r#type: r#type + self_ };", output)

    def test_names_shadowing_rust_types(self):
        output = self.compile("""
            import math;
            struct String { x: int }
            struct f64 { s: String }
            fn std(str: string) -> float {
                let w = f64 { s: String { x: 1 } };
                return math.sqrt(2.0);
            }
        """)
        self.assertIn("pub struct String_ {", output)
        self.assertIn("pub s: String_,", output)
        self.assertIn("pub fn std_(str_: &String) -> f64 {", output)
        self.assertIn("let w: f64_ = f64_ { s: String_ { x: 1 } };", body_lines(output, "std_"))
        self.assertIn("return f64::sqrt(2.0);", body_lines(output, "std_"))

    def test_most_negative_integer(self):
        output = self.compile("fn low() -> int { return -9223372036854775808; }")
        self.assertIn("return -9223372036854775808_i64;", body_lines(output, "low"))

    def test_expression_statements(self):
        output = self.compile("""
            fn f(s: string, n: int) {
                s;
                n + 1;
            }
        """)
        lines = body_lines(output, "f")
        self.assertIn("let _ = s;", lines)
        self.assertIn("let _ = n + 1;", lines)

    def test_builtin_templates(self):
        output = self.compile("""
            import math;
            import string;
            import io;
            fn f(a: int, b: int, s: string) -> string {
                let x = math.to_float(a + b);
                let y = math.sqrt(x * x);
                let z = math.pi();
                io.debug(a);
                return string.repeat(s, b - 1);
            }
        """)
        lines = body_lines(output, "f")
        self.assertIn("let x: f64 = ((a + b) as f64);", lines)
        self.assertIn("let y: f64 = f64::sqrt(x * x);", lines)
        self.assertIn("let z: f64 = std::f64::consts::PI;", lines)
        self.assertIn('println!("{:?}", &a);', lines)
        self.assertIn("return str::repeat(s, (b - 1) as usize);", lines)

    def test_struct_literal_in_comparison_is_parenthesized(self):
        output = self.compile("""
            struct P { x: int }
            fn f(p: P) -> bool {
                if p == (P { x: 1 }) { return true; }
                return false;
            }
        """)
        self.assertIn("if p == &(P { x: 1 }) {", output)

    def test_unknown_builtin(self):
        with self.assertRaises(UnknownBuiltinError) as ctx:
            self.compile("import math;\nfn f(x: float) -> float {\n    return math.cbrt(x);\n}")
        self.assertEqual(ctx.exception.location.line, 3)
        self.assertIn("math.cbrt", ctx.exception.message)

    def test_sqrt_missing_from_custom_table(self):
        table = MappingTable.from_dict({"version": "test", "entries": [
            {"module": "io", "function": "println", "params": ["string"],
             "ownership": ["ref"], "returns": "void", "target": "println!(\"{}\", $0)"},
        ]})
        with self.assertRaises(UnknownBuiltinError):
            self.compile("import math; fn f(x: float) -> float { return math.sqrt(x); }",
                         table=table)

    def test_output_is_deterministic(self):
        source = """
            import io;
            struct P { x: int, name: string }
            fn f(p: P) -> string { io.println(p.name); return p.name; }
            fn main() { let p = P { x: 1, name: "n" }; let s = f(p); let t = f(p); }
        """
        outputs = {self.compile(source) for _ in range(3)}
        self.assertEqual(len(outputs), 1)


if __name__ == '__main__':
    unittest.main()
