#!/usr/bin/env python3
# trustc – Trust compiler: line-oriented front end + llvmlite IR emitter
# Features:
#   - Declarations: Integer, String, Bool, heterogeneous Array [ ... ]
#   - Expressions: + - * / with precedence, parentheses, logical '!', array indexing a[i]
#   - print(...) with per-type rendering, if (cond) { ... } blocks
#   - Memory functions with typed parameters (Integer/String/Bool), lowered to LLVM functions
#   - Module scope + per-function scopes, fail-fast diagnostics (or --keep-going)
#   - Textual LLVM IR through llvmlite.ir, native build through clang
#
# Usage examples:
#   trustc examples/hello.trust                  # -> examples/hello
#   trustc examples/hello.trust --emit-ir -      # print IR, skip native build
#   trustc examples/hello.trust -o out/hello --cc clang-18 --verify-ir
#
from __future__ import annotations
import sys, re, math, string, logging, argparse, subprocess, tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Dict, Optional, Tuple, Any, Union
from abc import ABC, abstractmethod

from llvmlite import ir, binding as llvm

log = logging.getLogger("trustc")
log.addHandler(logging.NullHandler())

# ======
# Errors
# ======
RULE = "~" * 29

class TrustError(Exception):
    """Base of every compilation failure.

    `reason` completes the sentence "unable to ..."; the statement processor
    attaches the 1-based line number and the line text.
    """
    def __init__(self, reason: str, line: Optional[int] = None, text: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason; self.line = line; self.text = text

    def at(self, line: int, text: str) -> 'TrustError':
        if self.line is None:
            self.line, self.text = line, text
        return self

    def render(self) -> str:
        if self.line is None:
            return f"error: unable to {self.reason}"
        return (f"{RULE}\nBuilding failed on {self.line} line:\n"
                f"  \"{self.text}\" - unable to {self.reason}\n{RULE}")

class UsageError(TrustError):
    def render(self) -> str:
        return f"trustc: error: {self.reason}"

class SourceIOError(TrustError): pass
class TrustSyntaxError(TrustError): pass
class UndefinedReferenceError(TrustError): pass
class TypeMismatchError(TrustError): pass
class BoundsError(TrustError): pass
class ArityError(TrustError): pass
class ToolchainError(TrustError): pass

class DiagnosticsError(TrustError):
    """Every diagnostic of a --keep-going pass."""
    def __init__(self, errors: List[TrustError]):
        super().__init__(f"build: {len(errors)} error(s)")
        self.errors = errors

    def render(self) -> str:
        return "\n".join(e.render() for e in self.errors)

# =============
# Source loader
# =============
def strip_comment(line: str) -> str:
    """Drop a trailing // comment unless the slashes sit inside a "..." literal."""
    in_quotes = False
    for i, ch in enumerate(line):
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == "/" and not in_quotes and line.startswith("//", i):
            return line[:i]
    return line

def split_lines(text: str) -> List[str]:
    """Physical lines: split on '\\n' only, one trailing '\\r' dropped per line."""
    lines = text.split("\n")
    if lines and lines[-1] == "": lines.pop()
    return [l[:-1] if l.endswith("\r") else l for l in lines]

def load_source(path) -> List[str]:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceIOError(f"read source file {path}: {e}")
    lines = [strip_comment(l) for l in split_lines(text)]
    log.debug("loaded %d lines from %s", len(lines), path)
    return lines

# =====
#  AST
# =====
@dataclass
class Node(ABC): pass

@dataclass
class Expr(Node, ABC): pass

@dataclass
class Number(Expr): value:float=0.0

@dataclass
class Name(Expr): ident:str=""

@dataclass
class IndexExpr(Expr): array:str=""; index:Expr=None

@dataclass
class UnaryOp(Expr): op:str=""; expr:Expr=None

@dataclass
class BinOp(Expr): op:str=""; lhs:Expr=None; rhs:Expr=None

# ==================
# Expression parser
# ==================
IDENT_START = set(string.ascii_letters + "_")
IDENT_CHARS = IDENT_START | set(string.digits)
DIGITS = set(string.digits)

def matching_bracket(s: str, open_pos: int) -> int:
    """Index of the ']' closing the '[' at open_pos, or -1."""
    depth = 0
    for i in range(open_pos, len(s)):
        if s[i] == "[": depth += 1
        elif s[i] == "]":
            depth -= 1
            if depth == 0: return i
    return -1

class ExpressionParser:
    # expression := term (('+'|'-') term)*
    # term       := factor (('*'|'/') factor)*
    # factor     := '!' factor | '(' expression ')' | identifier | number
    def __init__(self, text: str):
        self.s = text; self.pos = 0

    def cur(self) -> str:
        return self.s[self.pos] if self.pos < len(self.s) else ""

    def skip_spaces(self):
        while self.pos < len(self.s) and self.s[self.pos].isspace(): self.pos += 1

    def accept(self, ch: str) -> bool:
        self.skip_spaces()
        if self.cur() == ch:
            self.pos += 1; return True
        return False

    def expect(self, ch: str, what: str):
        if not self.accept(ch):
            raise TrustSyntaxError(f"find {what} in expression '{self.s.strip()}'")

    def parse(self) -> Expr:
        node = self.expression()
        self.skip_spaces()
        if self.pos != len(self.s):
            raise TrustSyntaxError(f"parse expression '{self.s.strip()}': unexpected '{self.s[self.pos:]}'")
        return node

    def expression(self) -> Expr:
        node = self.term()
        while True:
            if self.accept("+"): node = BinOp("+", node, self.term())
            elif self.accept("-"): node = BinOp("-", node, self.term())
            else: return node

    def term(self) -> Expr:
        node = self.factor()
        while True:
            if self.accept("*"): node = BinOp("*", node, self.factor())
            elif self.accept("/"): node = BinOp("/", node, self.factor())
            else: return node

    def factor(self) -> Expr:
        if self.accept("!"):
            return UnaryOp("!", self.factor())
        if self.accept("("):
            node = self.expression()
            self.expect(")", "closing ')'")
            return node
        self.skip_spaces()
        if self.cur() in IDENT_START:
            return self.identifier()
        return self.number()

    def identifier(self) -> Expr:
        start = self.pos
        while self.cur() in IDENT_CHARS: self.pos += 1
        ident = self.s[start:self.pos]
        if self.cur() != "[":
            return Name(ident)
        close = matching_bracket(self.s, self.pos)
        if close < 0:
            raise TrustSyntaxError(f"find closing ']' for array '{ident}'")
        # the index is its own expression with its own cursor
        index = ExpressionParser(self.s[self.pos + 1:close]).parse()
        self.pos = close + 1
        return IndexExpr(ident, index)

    def number(self) -> Number:
        self.skip_spaces()
        start = self.pos
        if self.cur() in ("+", "-"): self.pos += 1
        digits_start = self.pos
        dot = False
        while self.cur() in DIGITS or self.cur() == ".":
            if self.cur() == ".":
                if dot: break  # a second '.' ends the literal
                dot = True
            self.pos += 1
        literal = self.s[start:self.pos]
        if self.pos == digits_start or literal.lstrip("+-") == ".":
            raise TrustSyntaxError(f"find a number at '{self.s[start:].strip()}'")
        return Number(float(literal))

def parse_expression(text: str) -> Expr:
    return ExpressionParser(text).parse()

# ==========================
# Scopes / symbol tables
# ==========================
@dataclass
class ArrayElement(ABC): pass

@dataclass
class NumElem(ArrayElement): value:float=0.0

@dataclass
class BoolElem(ArrayElement): value:float=0.0

@dataclass
class StrElem(ArrayElement): text:str=""

@dataclass
class Scope:
    """One lookup level. Scalars are floats, or IR values inside function bodies."""
    parent: Optional['Scope'] = None
    scalars: Dict[str, Any] = field(default_factory=dict)
    strings: Dict[str, Any] = field(default_factory=dict)
    arrays: Dict[str, List[ArrayElement]] = field(default_factory=dict)

    def child(self) -> 'Scope':
        return Scope(parent=self)

    def bind_scalar(self, name: str, value):
        self.strings.pop(name, None); self.scalars[name] = value

    def bind_string(self, name: str, value):
        self.scalars.pop(name, None); self.strings[name] = value

    def resolve(self, name: str, string_first: bool = False) -> Tuple[Optional[str], Any]:
        scope = self
        while scope is not None:
            if string_first and name in scope.strings: return "string", scope.strings[name]
            if name in scope.scalars: return "scalar", scope.scalars[name]
            if name in scope.strings: return "string", scope.strings[name]
            scope = scope.parent
        return None, None

    def array(self, name: str) -> Optional[List[ArrayElement]]:
        scope = self
        while scope is not None:
            if name in scope.arrays: return scope.arrays[name]
            scope = scope.parent
        return None

# ==========
# Evaluator
# ==========
DOUBLE = ir.DoubleType()
I32 = ir.IntType(32); I8 = ir.IntType(8); I1 = ir.IntType(1)
I8PTR = I8.as_pointer()

def divide(l: float, r: float) -> float:
    # IEEE-754 semantics instead of ZeroDivisionError
    if r != 0.0: return l / r
    if l == 0.0 or math.isnan(l): return math.nan
    return math.copysign(math.inf, l) * math.copysign(1.0, r)

def fold(op: str, l: float, r: float) -> float:
    if op == "+": return l + r
    if op == "-": return l - r
    if op == "*": return l * r
    if op == "/": return divide(l, r)
    raise TrustSyntaxError(f"apply operator '{op}'")

def format_number(x: float) -> str:
    if math.isfinite(x) and abs(x - round(x)) < 1e-9:
        return str(int(round(x)))
    return "%g" % x

class Evaluator:
    """Folds an expression to a float.

    Given a builder (function bodies), runtime operands are lowered to
    `double` arithmetic while constant sub-trees are still folded.
    """
    def __init__(self, scope: Scope, builder: Optional[ir.IRBuilder] = None):
        self.scope = scope; self.builder = builder

    def eval(self, e: Expr) -> Union[float, ir.Value]:
        if isinstance(e, Number): return e.value
        if isinstance(e, Name): return self.name(e.ident)
        if isinstance(e, IndexExpr):
            elem = self.element(e.array, e.index)
            if isinstance(elem, StrElem):
                raise TypeMismatchError(f"use string element of array '{e.array}' in numeric expression")
            return elem.value
        if isinstance(e, UnaryOp):
            v = self.eval(e.expr)
            if isinstance(v, float): return 1.0 if v == 0.0 else 0.0
            return self.builder.uitofp(self.builder.fcmp_ordered("==", v, DOUBLE(0.0)), DOUBLE)
        if isinstance(e, BinOp):
            l = self.eval(e.lhs); r = self.eval(e.rhs)
            if isinstance(l, float) and isinstance(r, float): return fold(e.op, l, r)
            return self.emit_binop(e.op, l, r)
        raise TrustSyntaxError(f"evaluate {e}")

    def name(self, ident: str) -> Union[float, ir.Value]:
        if ident == "true": return 1.0
        if ident == "false": return 0.0
        kind, value = self.scope.resolve(ident)
        if kind is None:
            raise UndefinedReferenceError(f"resolve variable '{ident}'")
        if kind == "string":
            raise TypeMismatchError(f"use string '{ident}' in numeric expression")
        if isinstance(value, ir.Value): return self.to_double(value)
        return value

    def element(self, array: str, index: Expr) -> ArrayElement:
        elems = self.scope.array(array)
        if elems is None:
            raise UndefinedReferenceError(f"find array '{array}'")
        idx = self.eval(index)
        if not isinstance(idx, float):
            raise TypeMismatchError(f"index array '{array}' with a runtime value")
        if not math.isfinite(idx) or not 0 <= int(idx) < len(elems):
            raise BoundsError(f"index array '{array}' at {format_number(idx)} (length {len(elems)})")
        return elems[int(idx)]

    def to_double(self, v: ir.Value) -> ir.Value:
        if isinstance(v.type, ir.IntType):
            if v.type.width == 1: return self.builder.uitofp(v, DOUBLE)
            return self.builder.sitofp(v, DOUBLE)
        return v

    def emit_binop(self, op: str, l, r) -> ir.Value:
        b = self.builder
        l = DOUBLE(l) if isinstance(l, float) else l
        r = DOUBLE(r) if isinstance(r, float) else r
        if op == "+": return b.fadd(l, r)
        if op == "-": return b.fsub(l, r)
        if op == "*": return b.fmul(l, r)
        if op == "/": return b.fdiv(l, r)
        raise TrustSyntaxError(f"apply operator '{op}'")

def evaluate(text: str, scope: Scope, builder: Optional[ir.IRBuilder] = None) -> Union[float, ir.Value]:
    return Evaluator(scope, builder).eval(parse_expression(text))

def render_element(elem: ArrayElement) -> str:
    if isinstance(elem, NumElem): return format_number(elem.value)
    if isinstance(elem, BoolElem): return "true" if elem.value else "false"
    return elem.text

# ================
# Line utilities
# ================
def split_args(text: str) -> List[str]:
    """Split on commas outside "..." literals and brackets."""
    args: List[str] = []
    cur: List[str] = []
    in_quotes = False; depth = 0
    for ch in text:
        if ch == '"':
            in_quotes = not in_quotes
        elif not in_quotes and ch in "([":
            depth += 1
        elif not in_quotes and ch in ")]":
            depth -= 1
        elif ch == "," and not in_quotes and depth == 0:
            args.append("".join(cur).strip()); cur = []
            continue
        cur.append(ch)
    if cur: args.append("".join(cur).strip())
    return args

def extract_block(lines: List[str], start: int) -> int:
    """Index one past the line whose '}' closes the first '{' seen from `start`.

    Braces are counted everywhere, including inside string literals.
    """
    depth = 0; opened = False
    for i in range(start, len(lines)):
        for ch in lines[i]:
            if ch == "{":
                depth += 1; opened = True
            elif ch == "}":
                depth -= 1
        if opened and depth <= 0:
            return i + 1
    raise TrustSyntaxError("find matching '}' for block")

def inline_block(rest: str) -> Optional[Tuple[str, str]]:
    """Split the text after an opening '{' at its matching '}'.

    Returns (body, trailing text), or None when the block goes on past this line.
    """
    depth = 1
    for j, ch in enumerate(rest):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return rest[:j].strip(), rest[j + 1:].strip()
    return None

def is_string_literal(s: str) -> bool:
    return len(s) >= 2 and s[0] == '"' and s[-1] == '"'

# ==================================
# Instructions / functions / globals
# ==================================
PARAM_TYPES = {"String": I8PTR, "Integer": I32, "Bool": I1}
RESERVED_NAMES = {"main", "printf", "print", "if", "true", "false",
                  "Integer", "String", "Bool", "Array", "Memory"}

@dataclass
class GlobalString:
    name: str
    text: str
    data: bytearray  # exact bytes, terminator included

@dataclass
class FunctionInfo:
    name: str
    params: List[Tuple[str, str]]  # (type tag, name)
    body: List[str]
    first_line: int = 1  # line number of body[0]

@dataclass
class Print: text:str; glob:GlobalString

@dataclass
class IntArg: value:int

@dataclass
class BoolArg: value:int

@dataclass
class StrArg: glob:GlobalString

@dataclass
class Call: function:str; args:List[Any]=field(default_factory=list)

class GlobalStringPool:
    """Ordered string constants; one entry per use, never coalesced."""
    def __init__(self):
        self.items: List[GlobalString] = []
        self._names: set = set()
        self._args = 0

    def add(self, name: str, text: str, newline: bool = False, printf: bool = False) -> GlobalString:
        if name in self._names:
            raise TrustSyntaxError(f"allocate global '{name}' twice")
        raw = text.replace("%", "%%") if printf else text
        if newline and not raw.endswith("\n"): raw += "\n"
        glob = GlobalString(name, text, bytearray(raw.encode("utf-8")) + b"\x00")
        self.items.append(glob); self._names.add(name)
        return glob

    def arg(self, text: str) -> GlobalString:
        glob = self.add(f".arg.{self._args}", text)
        self._args += 1
        return glob

    def __iter__(self): return iter(list(self.items))
    def __len__(self): return len(self.items)

@dataclass
class Program:
    scope: Scope
    functions: Dict[str, FunctionInfo]
    instructions: List[Any]
    pool: GlobalStringPool

# ====================
# Statement processor
# ====================
IDENT = r"[A-Za-z_][A-Za-z0-9_]*"
NAME_RE = re.compile(IDENT)
KEYWORD_RE = re.compile(r"(Integer|String|Bool|Array|Memory|print|if)\b")
CALL_RE = re.compile(rf"({IDENT})\s*\((.*)\)\s*;")
MEMORY_RE = re.compile(rf"Memory\s+({IDENT})\s*\((.*)\)\s*=\s*\{{")
IF_RE = re.compile(r"if\s*\((.*?)\)\s*\{(.*)")
INDEXED_RE = re.compile(rf"({IDENT})\[")

class StatementProcessor(ABC):
    """One forward pass over lines, classified by leading keyword.

    Subclasses decide what a print or a call turns into: ModulePass records
    instructions, FunctionLowering emits IR directly.
    """
    builder: Optional[ir.IRBuilder] = None

    def __init__(self, lines: List[str], scope: Scope, functions: Dict[str, FunctionInfo],
                 pool: GlobalStringPool, first_line: int = 1, collect_all: bool = False):
        self.lines = lines; self.scope = scope; self.functions = functions; self.pool = pool
        self.first_line = first_line; self.collect_all = collect_all
        self.errors: List[TrustError] = []

    def run(self, start: int = 0, end: Optional[int] = None) -> int:
        end = len(self.lines) if end is None else end
        i = start
        while i < end:
            raw = self.lines[i]; stmt = raw.strip()
            if not stmt or stmt == "}":
                i += 1; continue
            try:
                i = self.statement(stmt, i)
            except TrustError as err:
                err.at(self.first_line + i, raw)
                if not self.collect_all: raise
                log.debug("line %d: %s", err.line, err.reason)
                self.errors.append(err)
                i += 1
        return i

    def statement(self, stmt: str, i: int) -> int:
        m = KEYWORD_RE.match(stmt)
        kw = m.group(1) if m else None
        if kw == "Integer":
            name, expr = self.split_declaration(stmt[len(kw):], kw)
            self.scope.bind_scalar(name, self.value_of(expr))
        elif kw == "String":
            name, value = self.split_declaration(stmt[len(kw):], kw)
            if not is_string_literal(value):
                raise TrustSyntaxError("read string literal in String declaration")
            self.scope.bind_string(name, value[1:-1])
        elif kw == "Bool":
            name, value = self.split_declaration(stmt[len(kw):], kw)
            if value not in ("true", "false"):
                raise TrustSyntaxError(f"read boolean value '{value}' (expected true or false)")
            self.scope.bind_scalar(name, 1.0 if value == "true" else 0.0)
        elif kw == "Array":
            self.declare_array(stmt[len(kw):])
        elif kw == "Memory":
            return self.declare_function(stmt, i)
        elif kw == "print":
            self.print_stmt(stmt[len(kw):])
        elif kw == "if":
            return self.if_stmt(stmt, i)
        else:
            m = CALL_RE.fullmatch(stmt)
            if not m:
                raise TrustSyntaxError("recognize statement")
            self.call_stmt(m.group(1), m.group(2))
        return i + 1

    def value_of(self, expr: str):
        return evaluate(expr, self.scope, self.builder)

    def split_declaration(self, rest: str, kind: str) -> Tuple[str, str]:
        rest = rest.strip()
        m = NAME_RE.match(rest)
        if not m:
            raise TrustSyntaxError(f"find valid name in {kind} declaration")
        rest = rest[m.end():].strip()
        if not rest.startswith("="):
            raise TrustSyntaxError(f"find '=' in {kind} declaration")
        value = rest[1:].strip()
        if not value.endswith(";"):
            raise TrustSyntaxError(f"find ';' at end of {kind} declaration")
        return m.group(0), value[:-1].strip()

    def declare_array(self, rest: str):
        name, value = self.split_declaration(rest, "Array")
        if not (value.startswith("[") and value.endswith("]")):
            raise TrustSyntaxError("find array elements enclosed in []")
        self.scope.arrays[name] = [self.array_element(s) for s in split_args(value[1:-1])]

    def array_element(self, s: str) -> ArrayElement:
        if is_string_literal(s): return StrElem(s[1:-1])
        if s == "true": return BoolElem(1.0)
        if s == "false": return BoolElem(0.0)
        v = self.value_of(s)
        if not isinstance(v, float):
            raise TypeMismatchError(f"store runtime value '{s}' in an array")
        return NumElem(v)

    def parse_function_header(self, stmt: str) -> Tuple[str, List[Tuple[str, str]]]:
        m = MEMORY_RE.fullmatch(stmt)
        if not m:
            raise TrustSyntaxError("parse Memory declaration (expected 'Memory name(Type arg, ...) = {')")
        name = m.group(1)
        if name in RESERVED_NAMES:
            raise TrustSyntaxError(f"declare function with reserved name '{name}'")
        if name in self.functions:
            raise TrustSyntaxError(f"redeclare function '{name}'")
        params: List[Tuple[str, str]] = []
        for p in split_args(m.group(2).strip()):
            parts = p.split()
            if len(parts) != 2:
                raise TrustSyntaxError(f"parse parameter '{p}' (expected 'Type name')")
            ptype, pname = parts
            if ptype not in PARAM_TYPES:
                raise TrustSyntaxError(f"use unknown parameter type '{ptype}'")
            if not NAME_RE.fullmatch(pname) or pname in RESERVED_NAMES:
                raise TrustSyntaxError(f"use '{pname}' as a parameter name")
            if any(pname == n for _, n in params):
                raise TrustSyntaxError(f"declare parameter '{pname}' twice")
            params.append((ptype, pname))
        return name, params

    def declare_function(self, stmt: str, i: int) -> int:
        raise TrustSyntaxError("declare a function inside another function")

    def print_stmt(self, rest: str):
        rest = rest.lstrip()
        if not rest.startswith("("):
            raise TrustSyntaxError("find '(' after print")
        close = rest.rfind(")")
        if close < 0:
            raise TrustSyntaxError("find matching ')'")
        if rest[close + 1:].strip() != ";":
            raise TrustSyntaxError("find ';' at end of print call")
        args = split_args(rest[1:close].strip())
        if len(args) != 1:
            raise ArityError(f"print {len(args)} arguments (print expects exactly one)")
        self.emit_print(self.render_print(args[0]))

    def render_print(self, arg: str) -> Union[str, ir.Value]:
        m = INDEXED_RE.match(arg)
        if m and matching_bracket(arg, m.end() - 1) == len(arg) - 1:
            index = parse_expression(arg[m.end():-1])
            return render_element(Evaluator(self.scope, self.builder).element(m.group(1), index))
        if is_string_literal(arg):
            return arg[1:-1]
        if NAME_RE.fullmatch(arg):
            kind, value = self.scope.resolve(arg, string_first=True)
            if kind == "string" or isinstance(value, ir.Value):
                return value
        value = self.value_of(arg)
        return format_number(value) if isinstance(value, float) else value

    def if_stmt(self, stmt: str, i: int) -> int:
        m = IF_RE.fullmatch(stmt)
        if not m:
            raise TrustSyntaxError("parse if statement (expected 'if (condition) {')")
        inline = inline_block(m.group(2))
        if inline is None and m.group(2).strip():
            raise TrustSyntaxError("parse text after '{' (close the block on this line or start the body on the next)")
        if inline is not None and inline[1]:
            raise TrustSyntaxError(f"parse '{inline[1]}' after the closing '}}'")
        cond = self.value_of(m.group(1).strip())
        if not isinstance(cond, float):
            return self.runtime_if(cond, i, inline)
        if inline is None:
            end = extract_block(self.lines, i)
            self.closing_line(end)
            # only exactly 1.0 counts as true
            return i + 1 if cond == 1.0 else end
        if cond == 1.0:
            self.inline_statement(inline[0], i)
        return i + 1

    def inline_statement(self, body: str, i: int):
        """The statement between the braces of a one-line block, if any."""
        if not body:
            return
        m = KEYWORD_RE.match(body)
        if m and m.group(1) == "Memory":
            raise TrustSyntaxError("declare a function inside an if block")
        self.statement(body, i)

    def closing_line(self, end: int):
        """The line ending a multi-line block holds the '}' alone."""
        text = self.lines[end - 1]
        if text.strip() != "}":
            raise TrustSyntaxError("find '}' alone on the line closing the block").at(self.first_line + end - 1, text)

    def runtime_if(self, cond: ir.Value, i: int, inline: Optional[Tuple[str, str]]) -> int:
        raise TypeMismatchError("branch on a runtime value outside a function")

    def call_stmt(self, name: str, args_text: str):
        fn = self.functions.get(name)
        if fn is None:
            raise UndefinedReferenceError(f"find function '{name}'")
        args = split_args(args_text.strip())
        if len(args) != len(fn.params):
            raise ArityError(f"call '{name}' with {len(args)} argument(s), expected {len(fn.params)}")
        self.emit_call(fn, [self.lower_arg(fn, ptype, pname, a) for (ptype, pname), a in zip(fn.params, args)])

    def lower_arg(self, fn: FunctionInfo, ptype: str, pname: str, arg: str):
        if ptype == "String":
            if not is_string_literal(arg):
                raise TypeMismatchError(f"pass '{arg}' to String parameter '{pname}' of '{fn.name}' (string literal required)")
            return StrArg(self.pool.arg(arg[1:-1]))
        if is_string_literal(arg):
            raise TypeMismatchError(f"pass string literal to {ptype} parameter '{pname}' of '{fn.name}'")
        value = self.value_of(arg)
        if ptype == "Bool":
            if isinstance(value, float): return BoolArg(int(value != 0.0))
            return self.builder.fcmp_unordered("!=", value, DOUBLE(0.0))
        if not isinstance(value, float):
            return self.builder.fptosi(value, I32)
        if not math.isfinite(value):
            raise TypeMismatchError(f"pass non-finite value {format_number(value)} to Integer parameter '{pname}'")
        n = int(value)
        if not -2**31 <= n < 2**31:
            raise BoundsError(f"fit {n} into 32-bit Integer parameter '{pname}'")
        return IntArg(n)

    @abstractmethod
    def emit_print(self, rendered): ...

    @abstractmethod
    def emit_call(self, fn: FunctionInfo, args: List[Any]): ...

class ModulePass(StatementProcessor):
    """Module scope: builds the symbol tables and the instruction stream."""
    def __init__(self, lines: List[str], collect_all: bool = False):
        super().__init__(lines, Scope(), {}, GlobalStringPool(), 1, collect_all)
        self.instructions: List[Any] = []
        self._prints = 0

    def declare_function(self, stmt: str, i: int) -> int:
        name, params = self.parse_function_header(stmt)
        end = extract_block(self.lines, i)
        self.closing_line(end)
        self.functions[name] =FunctionInfo(name, params, self.lines[i + 1:end - 1], self.first_line + i + 1)
        log.debug("declared function %s(%s), %d body lines", name,
                  ", ".join(f"{t} {n}" for t, n in params), end - i - 2)
        return end

    def emit_print(self, rendered):
        glob = self.pool.add(f".str.{self._prints}", rendered, newline=True, printf=True)
        self._prints += 1
        self.instructions.append(Print(rendered, glob))

    def emit_call(self, fn: FunctionInfo, args: List[Any]):
        self.instructions.append(Call(fn.name, args))

    def compile(self) -> Program:
        self.run()
        if self.errors:
            raise DiagnosticsError(self.errors)
        log.debug("module pass: %d scalars, %d strings, %d arrays, %d functions, %d instructions",
                  len(self.scope.scalars), len(self.scope.strings), len(self.scope.arrays),
                  len(self.functions), len(self.instructions))
        return Program(self.scope, self.functions, self.instructions, self.pool)

class FunctionLowering(StatementProcessor):
    """Re-interprets one function body into its LLVM function."""
    def __init__(self, emitter: 'IREmitter', fn: FunctionInfo, irfn: ir.Function):
        program = emitter.program
        super().__init__(fn.body, program.scope.child(), program.functions, program.pool, fn.first_line)
        self.emitter = emitter; self.fn = fn; self._n = 0
        self.builder = ir.IRBuilder(irfn.append_basic_block("entry"))
        for (ptype, pname), arg in zip(fn.params, irfn.args):
            arg.name = pname
            if ptype == "String": self.scope.bind_string(pname, arg)
            else: self.scope.bind_scalar(pname, arg)

    def lower(self):
        self.run()
        self.builder.ret_void()

    def local_name(self) -> str:
        name = f".{self.fn.name}.{self._n}"
        self._n += 1
        return name

    def emit_print(self, rendered):
        b = self.builder
        if isinstance(rendered, str):
            glob = self.pool.add(self.local_name(), rendered, newline=True, printf=True)
            b.call(self.emitter.printf, [self.emitter.string_ptr(b, glob)])
            return
        value = rendered
        if isinstance(value.type, ir.PointerType):
            fmt = "%s"
        elif isinstance(value.type, ir.IntType):
            fmt = "%d"
            if value.type.width == 1: value = b.zext(value, I32)
        else:
            fmt = "%g"
        glob = self.pool.add(self.local_name(), fmt, newline=True)
        b.call(self.emitter.printf, [self.emitter.string_ptr(b, glob), value])

    def emit_call(self, fn: FunctionInfo, args: List[Any]):
        b = self.builder
        b.call(self.emitter.functions[fn.name], [self.emitter.arg_value(b, a) for a in args])

    def runtime_if(self, cond: ir.Value, i: int, inline: Optional[Tuple[str, str]]) -> int:
        if inline is None:
            end = extract_block(self.lines, i)
            self.closing_line(end)
        else:
            end = i + 1
        pred = self.builder.fcmp_ordered("==", cond, DOUBLE(1.0))
        outer = self.scope
        self.scope = outer.child()
        try:
            with self.builder.if_then(pred):
                if inline is None: self.run(i + 1, end - 1)
                else: self.inline_statement(inline[0], i)
        finally:
            self.scope = outer
        return end

# ==========
# IR emitter
# ==========
class IREmitter:
    def __init__(self, program: Program, triple: Optional[str] = None):
        self.program = program
        self.module = ir.Module(name="trust_module")
        if triple: self.module.triple = triple
        self.printf = ir.Function(self.module, ir.FunctionType(I32, [I8PTR], var_arg=True), name="printf")
        self.globals: Dict[str, ir.GlobalVariable] = {}
        self.functions: Dict[str, ir.Function] = {}

    def emit(self) -> str:
        for glob in self.program.pool:
            self.materialize(glob)
        # declare everything first so bodies may call any function, themselves included
        for fn in self.program.functions.values():
            fnty = ir.FunctionType(ir.VoidType(), [PARAM_TYPES[t] for t, _ in fn.params])
            self.functions[fn.name] = ir.Function(self.module, fnty, name=fn.name)
        for fn in self.program.functions.values():
            FunctionLowering(self, fn, self.functions[fn.name]).lower()
        self.emit_entry()
        text = str(self.module)
        log.debug("emitted %d bytes of IR (%d globals, %d functions)",
                  len(text), len(self.globals), len(self.functions))
        return text

    def emit_entry(self):
        main = ir.Function(self.module, ir.FunctionType(I32, []), name="main")
        b = ir.IRBuilder(main.append_basic_block("entry"))
        for ins in self.program.instructions:
            if isinstance(ins, Print):
                b.call(self.printf, [self.string_ptr(b, ins.glob)])
            elif isinstance(ins, Call):
                b.call(self.functions[ins.function], [self.arg_value(b, a) for a in ins.args])
        b.ret(I32(0))

    def materialize(self, glob: GlobalString) -> ir.GlobalVariable:
        gv = self.globals.get(glob.name)
        if gv is None:
            ty = ir.ArrayType(I8, len(glob.data))
            gv = ir.GlobalVariable(self.module, ty, name=glob.name)
            gv.linkage = "private"
            gv.global_constant = True
            gv.initializer = ir.Constant(ty, glob.data)
            self.globals[glob.name] = gv
        return gv

    def string_ptr(self, b: ir.IRBuilder, glob: GlobalString) -> ir.Value:
        return b.gep(self.materialize(glob), [I32(0), I32(0)], inbounds=True)

    def arg_value(self, b: ir.IRBuilder, a) -> ir.Value:
        if isinstance(a, IntArg): return I32(a.value)
        if isinstance(a, BoolArg): return I1(a.value)
        if isinstance(a, StrArg): return self.string_ptr(b, a.glob)
        return a

def compile_lines(lines: List[str], collect_all: bool = False, triple: Optional[str] = None) -> str:
    program = ModulePass(lines, collect_all).compile()
    return IREmitter(program, triple).emit()

def compile_source(src: str, **kwargs) -> str:
    return compile_lines([strip_comment(l) for l in split_lines(src)], **kwargs)

# ===============
# Native toolchain
# ===============
def verify_ir(text: str):
    try:
        llvm.parse_assembly(text).verify()
    except RuntimeError as e:
        raise ToolchainError(f"verify emitted IR: {e}")

def write_ir(text: str, dest: str):
    if dest == "-":
        sys.stdout.write(text); return
    try:
        Path(dest).write_text(text, encoding="utf-8")
    except OSError as e:
        raise SourceIOError(f"write IR file {dest}: {e}")

def build_executable(ir_text: str, output: Path, cc: str = "clang"):
    """Compile IR text with the native compiler; the scratch directory never outlives the call."""
    with tempfile.TemporaryDirectory(prefix="trustc-") as tmp:
        ll_path = Path(tmp) / "output.ll"
        try:
            ll_path.write_text(ir_text, encoding="utf-8")
        except OSError as e:
            raise SourceIOError(f"write IR file {ll_path}: {e}")
        cmd = [cc, str(ll_path), "-o", str(output)]
        log.debug("running %s", " ".join(cmd))
        try:
            proc = subprocess.run(cmd, check=False)
        except OSError as e:
            raise ToolchainError(f"run native compiler '{cc}': {e}")
        if proc.returncode != 0:
            raise ToolchainError(f"compile with {cc} (exit status {proc.returncode})")

# ==========
#   Driver
# ==========
@dataclass
class BuildOptions:
    source: Path
    output: Optional[Path] = None
    emit_ir: Optional[str] = None
    cc: str = "clang"
    verify: bool = False
    keep_going: bool = False
    triple: Optional[str] = None
    verbose: bool = False

    @property
    def executable(self) -> Path:
        if self.output is not None: return self.output
        out = self.source.with_suffix("")
        if out == self.source:
            raise UsageError(f"cannot derive an executable name from '{self.source}' (no extension); pass -o")
        return out

class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        raise UsageError(message)

def parse_args(argv: Optional[List[str]] = None) -> BuildOptions:
    ap = _ArgumentParser(prog="trustc", description="Compile a Trust source file to a native executable.")
    ap.add_argument("source", help=".trust source file")
    ap.add_argument("-o", "--output", default=None, help="executable path (default: source without extension)")
    ap.add_argument("--emit-ir", default=None, metavar="PATH", help="write LLVM IR to PATH ('-' for stdout) and stop")
    ap.add_argument("--cc", default="clang", help="native compiler (default: clang)")
    ap.add_argument("--verify-ir", action="store_true", help="verify the IR with llvmlite before compiling")
    ap.add_argument("--keep-going", action="store_true", help="report every statement error, not only the first")
    ap.add_argument("--target-triple", default=None, help="target triple written into the module")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    args = ap.parse_args(argv)
    return BuildOptions(source=Path(args.source),
                        output=Path(args.output) if args.output else None,
                        emit_ir=args.emit_ir, cc=args.cc, verify=args.verify_ir,
                        keep_going=args.keep_going, triple=args.target_triple,
                        verbose=args.verbose)

def run(opts: BuildOptions):
    lines = load_source(opts.source)
    triple = opts.triple
    if triple is None and opts.emit_ir is None:
        triple = llvm.get_default_triple()
    text = compile_lines(lines, collect_all=opts.keep_going, triple=triple)
    if opts.verify:
        verify_ir(text)
    if opts.emit_ir is not None:
        write_ir(text, opts.emit_ir)
        return
    build_executable(text, opts.executable, opts.cc)

def main(argv: Optional[List[str]] = None) -> int:
    try:
        opts = parse_args(argv)
        logging.basicConfig(level=logging.DEBUG if opts.verbose else logging.WARNING,
                            format="%(name)s: %(levelname)s: %(message)s")
        run(opts)
    except TrustError as e:
        print(e.render(), file=sys.stderr)
        return 1
    return 0

if __name__=="__main__":
    sys.exit(main())
