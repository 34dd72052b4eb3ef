# interpreter.py
# A small evaluator for the Python subset the code agent writes.
#
# Scripts are parsed with the stdlib `ast` module and walked node by node.
# Nothing is ever handed to exec()/eval(): every call goes through an
# explicit builtin table, the tool registry, or a method/attribute lookup on
# a value, with private attributes refused. This keeps well-meaning model
# output contained; it is not a security boundary against hostile code.
#
# Values are plain Python objects. Tuples become lists at the boundary, and
# container values are copied before a method is called on them, so the
# environment never holds two names aliasing one mutable object.

import ast
import copy
import importlib
import math
import operator
from typing import TYPE_CHECKING, Any, Callable, Iterator

from stepwise import config
from stepwise.errors import (
    AgentError,
    FinalAnswerSignal,
    InterpreterError,
    InterpreterRuntimeError,
    InterpreterSyntaxError,
    OperationLimitExceeded,
    UnauthorizedImport,
    UnsupportedOperation,
)

if TYPE_CHECKING:
    from stepwise.tools import Tool, ToolRegistry


PRINT_LOGS = "print_logs"

BUILTINS: dict[str, Callable[..., Any]] = {
    "range": range,
    "len": len,
    "sum": sum,
    "max": max,
    "min": min,
    "abs": abs,
    "round": round,
    "sorted": sorted,
    "reversed": reversed,
    "enumerate": enumerate,
    "zip": zip,
    "map": map,
    "filter": filter,
    "all": all,
    "any": any,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "list": list,
    "dict": dict,
    "tuple": tuple,
    "set": set,
    "ord": ord,
    "chr": chr,
    "divmod": divmod,
    "isinstance": isinstance,
    "type": type,
    "next": next,
    "iter": iter,
    "callable": callable,
    "hasattr": hasattr,
    "complex": complex,
    "pow": pow,
    "ceil": math.ceil,
    "floor": math.floor,
    "log": math.log,
    "exp": math.exp,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "atan2": math.atan2,
    "degrees": math.degrees,
    "radians": math.radians,
    "sqrt": math.sqrt,
}

# Methods that change their receiver. Calling one on a variable rebinds the
# variable to the changed copy.
MUTATING_METHODS = frozenset(
    {
        "append",
        "extend",
        "insert",
        "remove",
        "pop",
        "sort",
        "reverse",
        "clear",
        "update",
        "setdefault",
        "add",
        "discard",
    }
)

# These return the receiver itself instead of None.
RETURNS_RECEIVER = frozenset({"append", "extend", "insert"})

COMPARE_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

FLOAT_OPS: dict[type, tuple[str, Callable[[float, float], float]]] = {
    ast.Add: ("+", operator.add),
    ast.Sub: ("-", operator.sub),
    ast.Mult: ("*", operator.mul),
    ast.Div: ("/", operator.truediv),
    ast.FloorDiv: ("//", operator.floordiv),
    ast.Mod: ("%", operator.mod),
    ast.Pow: ("**", operator.pow),
    # Matrix product of two scalars is their product.
    ast.MatMult: ("@", operator.mul),
}

INT_OPS: dict[type, tuple[str, Callable[[int, int], int]]] = {
    ast.BitOr: ("|", operator.or_),
    ast.BitXor: ("^", operator.xor),
    ast.BitAnd: ("&", operator.and_),
    ast.LShift: ("<<", operator.lshift),
    ast.RShift: (">>", operator.rshift),
}

_INT64 = 1 << 64


def _wrap_int64(value: int) -> int:
    return ((value + (1 << 63)) % _INT64) - (1 << 63)


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


# ---------------------------------------------------------------------------
# Text form
# ---------------------------------------------------------------------------


def to_text(value: Any) -> str:
    """
    Render a value the way it appears in observations and print output.

    Strings are verbatim, integral floats drop their ".0", and containers
    show their items' text forms (so strings inside a list are unquoted).
    """
    if isinstance(value, str):
        return value
    if type(value) is float and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(to_text(item) for item in value) + "]"
    if type(value) is dict:
        items = (
            f"{_key_text(key)}: {to_text(item)}" for key, item in value.items()
        )
        return "{" + ", ".join(items) + "}"
    return str(value)


def _key_text(key: Any) -> str:
    if isinstance(key, str):
        return f"'{key}'"
    return to_text(key)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


class Environment:
    """Variable bindings, captured print output and recorded functions."""

    def __init__(self, bindings: dict[str, Any] | None = None) -> None:
        self.bindings: dict[str, Any] = dict(bindings or {})
        self.print_logs: list[str] = []
        self.functions: dict[str, ast.FunctionDef] = {}
        self.operations = 0

    def __contains__(self, name: str) -> bool:
        return name in self.bindings or name == PRINT_LOGS

    def get(self, name: str) -> Any:
        if name in self.bindings:
            return self.bindings[name]
        if name == PRINT_LOGS:
            return list(self.print_logs)
        raise InterpreterRuntimeError(f"Variable '{name}' used before assignment")

    def set(self, name: str, value: Any) -> None:
        if name == PRINT_LOGS:
            raise InterpreterRuntimeError(f"Cannot assign to reserved name '{PRINT_LOGS}'")
        self.bindings[name] = value

    def log(self, line: str) -> None:
        self.print_logs.append(line)

    def copy(self) -> "Environment":
        clone = Environment()
        for name, value in self.bindings.items():
            try:
                clone.bindings[name] = copy.deepcopy(value)
            except TypeError:
                # Modules and other handles cannot be copied; they are shared.
                clone.bindings[name] = value
        clone.print_logs = list(self.print_logs)
        clone.functions = dict(self.functions)
        clone.operations = self.operations
        return clone


# ---------------------------------------------------------------------------
# Host runtime
# ---------------------------------------------------------------------------


class HostRuntime:
    """
    The single place where script values meet real Python objects.

    Every builtin call, method call, attribute read, subscript and iteration
    passes through here. Exceptions raised on the host side come back as
    InterpreterRuntimeError("<ExceptionType>: <message>").
    """

    def __init__(self, builtins: dict[str, Callable[..., Any]] | None = None) -> None:
        self.builtins = dict(BUILTINS if builtins is None else builtins)

    def has_builtin(self, name: str) -> bool:
        return name in self.builtins

    # -- conversion ---------------------------------------------------------

    def to_host(self, value: Any) -> Any:
        """Prepare a value for a host call. Integral floats cross as ints."""
        if type(value) is float and math.isfinite(value) and value.is_integer():
            return int(value)
        if type(value) is list:
            return [self.to_host(item) for item in value]
        if type(value) is dict:
            return {key: self.to_host(item) for key, item in value.items()}
        return value

    def to_value(self, obj: Any) -> Any:
        """Bring a host object back. Probe order: float, str, bool, int, sequence, mapping."""
        kind = type(obj)
        if kind is float or kind is str or kind is bool or kind is int:
            return obj
        if kind is list or kind is tuple:
            return [self.to_value(item) for item in obj]
        if kind is dict:
            return {self.mapping_key(key): self.to_value(item) for key, item in obj.items()}
        return obj

    def mapping_key(self, key: Any) -> str:
        """Mappings are keyed by the text form of their keys."""
        return key if isinstance(key, str) else to_text(self.to_value(key))

    def materialize(self, value: Any) -> Any:
        """Return a private copy of a container value; other values as-is."""
        if type(value) in (list, dict, set):
            return copy.copy(value)
        return value

    # -- calls --------------------------------------------------------------

    def call(self, func: Callable[..., Any], args: list[Any], kwargs: dict[str, Any]) -> Any:
        host_args = [self.to_host(arg) for arg in args]
        host_kwargs = {key: self.to_host(val) for key, val in kwargs.items()}
        try:
            result = func(*host_args, **host_kwargs)
        except InterpreterError:
            raise
        except Exception as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc
        return self.to_value(result)

    def call_builtin(self, name: str, args: list[Any], kwargs: dict[str, Any]) -> Any:
        return self.call(self.builtins[name], args, kwargs)

    def call_method(self, obj: Any, name: str, args: list[Any], kwargs: dict[str, Any]) -> Any:
        method = self.get_attribute(obj, name, convert=False)
        return self.call(method, args, kwargs)

    def get_attribute(self, obj: Any, name: str, convert: bool = True) -> Any:
        if name.startswith("_"):
            raise InterpreterRuntimeError(f"Forbidden access to private attribute '{name}'")
        try:
            attr = getattr(obj, name)
        except AttributeError as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc
        return self.to_value(attr) if convert else attr

    def get_item(self, obj: Any, key: Any) -> Any:
        if type(obj) is dict:
            key = self.mapping_key(key)
        try:
            return self.to_value(obj[self.to_host(key)])
        except Exception as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc

    def set_item(self, obj: Any, key: Any, value: Any) -> None:
        if type(obj) is dict:
            key = self.mapping_key(key)
        try:
            obj[self.to_host(key)] = value
        except Exception as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc

    def iterate(self, obj: Any) -> Iterator[Any]:
        if type(obj) is list:
            yield from obj
            return
        try:
            iterator = iter(obj)
        except TypeError as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc
        while True:
            try:
                item = next(iterator)
            except StopIteration:
                return
            except Exception as exc:
                raise InterpreterRuntimeError(_describe(exc)) from exc
            yield self.to_value(item)

    def truth(self, value: Any) -> bool:
        try:
            return bool(value)
        except Exception as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc

    def format(self, value: Any, spec: str) -> str:
        try:
            return format(self.to_host(value), spec)
        except (TypeError, ValueError) as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class _Break(Exception):
    pass


class _Continue(Exception):
    pass


class ScriptEvaluator:
    """Walks one parsed script against an Environment."""

    def __init__(
        self,
        environment: Environment,
        registry: "ToolRegistry | None" = None,
        host: HostRuntime | None = None,
        max_operations: int = config.MAX_OPERATIONS,
        authorized_imports: tuple[str, ...] = config.AUTHORIZED_IMPORTS,
    ) -> None:
        self.env = environment
        self.registry = registry
        self.host = host or HostRuntime()
        self.max_operations = max_operations
        self.authorized_imports = authorized_imports

    def run(self, tree: ast.Module) -> Any:
        self.env.operations = 0
        try:
            return self.exec_block(tree.body)
        except _Break:
            raise InterpreterRuntimeError("'break' outside loop") from None
        except _Continue:
            raise InterpreterRuntimeError("'continue' not properly in loop") from None

    def tick(self) -> None:
        self.env.operations += 1
        if self.env.operations > self.max_operations:
            raise OperationLimitExceeded(
                f"Reached the max number of operations of {self.max_operations}. "
                "Maybe there is an infinite loop somewhere in the code, "
                "or you're just asking too many calls."
            )

    # -- statements ---------------------------------------------------------

    def exec_block(self, body: list[ast.stmt]) -> Any:
        result: Any = ""
        for stmt in body:
            result = self.exec_stmt(stmt)
        return result

    def exec_stmt(self, node: ast.stmt) -> Any:
        self.tick()
        handler = getattr(self, f"exec_{type(node).__name__}", None)
        if handler is None:
            raise UnsupportedOperation(f"Unsupported statement: {type(node).__name__}")
        return handler(node)

    def exec_Expr(self, node: ast.Expr) -> Any:
        return self.eval(node.value)

    def exec_Assign(self, node: ast.Assign) -> Any:
        value = self.eval(node.value)
        for target in node.targets:
            self.assign(target, value)
        return ""

    def exec_AnnAssign(self, node: ast.AnnAssign) -> Any:
        if node.value is not None:
            self.assign(node.target, self.eval(node.value))
        return ""

    def exec_AugAssign(self, node: ast.AugAssign) -> Any:
        if not isinstance(node.target, ast.Name):
            raise UnsupportedOperation("Augmented assignment is only supported on names")
        current = self.env.get(node.target.id)
        self.env.set(node.target.id, self.binary_op(node.op, current, self.eval(node.value)))
        return ""

    def exec_For(self, node: ast.For) -> Any:
        iterable = self.eval(node.iter)
        if not isinstance(node.target, ast.Name):
            raise InterpreterRuntimeError("Expected name as loop target")
        result: Any = ""
        for item in self.host.iterate(iterable):
            self.tick()
            self.env.set(node.target.id, item)
            try:
                result = self.exec_block(node.body)
            except _Continue:
                continue
            except _Break:
                break
        else:
            if node.orelse:
                result = self.exec_block(node.orelse)
        return result

    def exec_While(self, node: ast.While) -> Any:
        result: Any = ""
        while self.host.truth(self.eval(node.test)):
            self.tick()
            try:
                result = self.exec_block(node.body)
            except _Continue:
                continue
            except _Break:
                break
        else:
            if node.orelse:
                result = self.exec_block(node.orelse)
        return result

    def exec_If(self, node: ast.If) -> Any:
        if self.host.truth(self.eval(node.test)):
            return self.exec_block(node.body)
        return self.exec_block(node.orelse)

    def exec_Pass(self, node: ast.Pass) -> Any:
        return ""

    def exec_Break(self, node: ast.Break) -> Any:
        raise _Break()

    def exec_Continue(self, node: ast.Continue) -> Any:
        raise _Continue()

    def exec_FunctionDef(self, node: ast.FunctionDef) -> Any:
        self.env.functions[node.name] = node
        return f"Function: {node.name}"

    def exec_Import(self, node: ast.Import) -> Any:
        for alias in node.names:
            module = self.import_module(alias.name)
            if alias.asname:
                self.env.set(alias.asname, module)
            else:
                root = alias.name.split(".")[0]
                self.env.set(root, self.import_module(root))
        return ""

    def exec_ImportFrom(self, node: ast.ImportFrom) -> Any:
        if node.level or not node.module:
            raise UnauthorizedImport("Relative imports are not permitted")
        module = self.import_module(node.module)
        for alias in node.names:
            if alias.name == "*":
                raise UnsupportedOperation(f"Wildcard import from '{node.module}' is not supported")
            value = self.host.get_attribute(module, alias.name)
            self.env.set(alias.asname or alias.name, value)
        return ""

    def import_module(self, name: str) -> Any:
        if name.split(".")[0] not in self.authorized_imports:
            raise UnauthorizedImport(
                f"Import of {name} is not allowed. Authorized imports are: "
                f"{list(self.authorized_imports)}"
            )
        try:
            return importlib.import_module(name)
        except ImportError as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc

    # -- assignment targets -------------------------------------------------

    def assign(self, target: ast.expr, value: Any) -> None:
        if isinstance(target, ast.Name):
            self.env.set(target.id, value)
        elif isinstance(target, (ast.Tuple, ast.List)):
            values = value if type(value) is list else self.unpackable(value)
            if len(target.elts) != len(values):
                raise InterpreterRuntimeError(
                    f"Tuple unpacking failed. Expected {len(target.elts)} values, got {len(values)}"
                )
            for element, item in zip(target.elts, values):
                self.assign(element, item)
        elif isinstance(target, ast.Subscript) and self.is_rooted(target.value):
            container = self.host.materialize(self.eval(target.value))
            self.host.set_item(container, self.eval(target.slice), value)
            self.write_back(target.value, container)
        else:
            raise UnsupportedOperation(f"Unsupported assignment target: {type(target).__name__}")

    def is_rooted(self, node: ast.expr) -> bool:
        """True for a name, or a chain of subscripts ending in a name."""
        while isinstance(node, ast.Subscript):
            node = node.value
        return isinstance(node, ast.Name)

    def write_back(self, target: ast.expr, value: Any) -> None:
        """Store an updated container at `target`, copying each enclosing container."""
        if isinstance(target, ast.Name):
            self.env.set(target.id, value)
            return
        parent = self.host.materialize(self.eval(target.value))
        self.host.set_item(parent, self.eval(target.slice), value)
        self.write_back(target.value, parent)

    def unpackable(self, value: Any) -> list[Any]:
        if isinstance(value, (int, float, bool)) or value is None:
            raise InterpreterRuntimeError("Tuple unpacking failed. Expected values of type tuple")
        return list(self.host.iterate(value))

    # -- expressions --------------------------------------------------------

    def eval(self, node: ast.expr) -> Any:
        handler = getattr(self, f"eval_{type(node).__name__}", None)
        if handler is None:
            raise UnsupportedOperation(f"Unsupported expression: {type(node).__name__}")
        return handler(node)

    def eval_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def eval_Name(self, node: ast.Name) -> Any:
        if node.id in self.env:
            return self.env.get(node.id)
        if self.host.has_builtin(node.id):
            return self.host.builtins[node.id]
        return self.env.get(node.id)

    def eval_List(self, node: ast.List) -> Any:
        return self.eval_elements(node.elts)

    def eval_Tuple(self, node: ast.Tuple) -> Any:
        return self.eval_elements(node.elts)

    def eval_Set(self, node: ast.Set) -> Any:
        return self.host.call(set, [self.eval_elements(node.elts)], {})

    def eval_elements(self, elts: list[ast.expr]) -> list[Any]:
        items = []
        for elt in elts:
            if isinstance(elt, ast.Starred):
                items.extend(self.host.iterate(self.eval(elt.value)))
            else:
                items.append(self.eval(elt))
        return items

    def eval_Dict(self, node: ast.Dict) -> Any:
        result: dict[Any, Any] = {}
        for key_node, value_node in zip(node.keys, node.values):
            if key_node is None:
                unpacked = self.eval(value_node)
                if not isinstance(unpacked, dict):
                    raise InterpreterRuntimeError("TypeError: '**' requires a mapping")
                result.update(unpacked)
                continue
            self.host.set_item(result, self.eval(key_node), self.eval(value_node))
        return result

    def eval_JoinedStr(self, node: ast.JoinedStr) -> Any:
        return "".join(self.eval_fstring_part(part) for part in node.values)

    def eval_fstring_part(self, node: ast.expr) -> str:
        if not isinstance(node, ast.FormattedValue):
            return to_text(self.eval(node))
        value = self.eval(node.value)
        if node.conversion == ord("r"):
            value = repr(self.host.to_host(value))
        elif node.conversion == ord("a"):
            value = ascii(self.host.to_host(value))
        if node.format_spec is None:
            return to_text(value)
        spec = self.eval(node.format_spec)
        return self.host.format(value, spec)

    def eval_FormattedValue(self, node: ast.FormattedValue) -> Any:
        return self.eval_fstring_part(node)

    def eval_Attribute(self, node: ast.Attribute) -> Any:
        return self.host.get_attribute(self.eval(node.value), node.attr)

    def eval_Subscript(self, node: ast.Subscript) -> Any:
        value = self.eval(node.value)
        return self.host.get_item(value, self.eval(node.slice))

    def eval_Slice(self, node: ast.Slice) -> Any:
        bounds = [
            None if part is None else self.host.to_host(self.eval(part))
            for part in (node.lower, node.upper, node.step)
        ]
        return slice(*bounds)

    def eval_BinOp(self, node: ast.BinOp) -> Any:
        return self.binary_op(node.op, self.eval(node.left), self.eval(node.right))

    def binary_op(self, op: ast.operator, left: Any, right: Any) -> Any:
        lt, rt = type(left), type(right)
        if isinstance(op, ast.Add):
            if lt is str and rt is str:
                return left + right
            if lt is str and rt is int:
                return left + str(right)
            if lt is int and rt is str:
                return str(left) + right
            if lt is list and rt is list:
                return left + right
        if isinstance(op, ast.Mult):
            if lt is str and rt is int:
                return left * right
            if lt is int and rt is str:
                return left * right

        if type(op) in INT_OPS:
            symbol, fn = INT_OPS[type(op)]
            a = self.as_int64(left, right, symbol)
            b = self.as_int64(right, left, symbol, swapped=True)
            if isinstance(op, (ast.LShift, ast.RShift)):
                if b < 0:
                    raise InterpreterRuntimeError("ValueError: negative shift count")
                if isinstance(op, ast.LShift) and b >= 64:
                    return 0
            return _wrap_int64(fn(a, b))

        symbol, fn = FLOAT_OPS[type(op)]
        a = self.as_float(left, right, symbol)
        b = self.as_float(right, left, symbol, swapped=True)
        try:
            return fn(a, b)
        except (ZeroDivisionError, OverflowError, ValueError) as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc

    def as_float(self, value: Any, other: Any, symbol: str, swapped: bool = False) -> float:
        if type(value) in (int, float, bool):
            try:
                return float(value)
            except OverflowError as exc:
                raise InterpreterRuntimeError(_describe(exc)) from exc
        left, right = (other, value) if swapped else (value, other)
        raise InterpreterRuntimeError(
            f"TypeError: unsupported operand type(s) for {symbol}: "
            f"'{type(left).__name__}' and '{type(right).__name__}'"
        )

    def as_int64(self, value: Any, other: Any, symbol: str, swapped: bool = False) -> int:
        number = self.as_float(value, other, symbol, swapped) if type(value) is not int else value
        try:
            return _wrap_int64(int(number))
        except (OverflowError, ValueError) as exc:
            raise InterpreterRuntimeError(_describe(exc)) from exc

    def eval_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.eval(node.operand)
        kind = type(operand)
        if isinstance(node.op, ast.USub):
            if kind in (int, float):
                return -operand
            raise InterpreterRuntimeError(f"TypeError: bad operand type for unary -: '{kind.__name__}'")
        if isinstance(node.op, ast.UAdd):
            return operand
        if isinstance(node.op, ast.Not):
            if kind is bool:
                return not operand
            raise InterpreterRuntimeError(f"TypeError: 'not' expects a bool, got '{kind.__name__}'")
        # Invert
        if kind is int:
            return ~operand
        if kind is float and math.isfinite(operand) and operand.is_integer():
            return ~int(operand)
        raise InterpreterRuntimeError(f"TypeError: bad operand type for unary ~: '{kind.__name__}'")

    def eval_BoolOp(self, node: ast.BoolOp) -> Any:
        result: Any = None
        for value_node in node.values:
            result = self.eval(value_node)
            truth = self.host.truth(result)
            if isinstance(node.op, ast.And) and not truth:
                return result
            if isinstance(node.op, ast.Or) and truth:
                return result
        return result

    def eval_Compare(self, node: ast.Compare) -> Any:
        left = self.eval(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.eval(comparator)
            try:
                outcome = COMPARE_OPS[type(op)](left, right)
            except TypeError as exc:
                raise InterpreterRuntimeError(_describe(exc)) from exc
            if not self.host.truth(outcome):
                return False
            left = right
        return True

    def eval_IfExp(self, node: ast.IfExp) -> Any:
        if self.host.truth(self.eval(node.test)):
            return self.eval(node.body)
        return self.eval(node.orelse)

    # -- comprehensions -----------------------------------------------------

    def comprehension(self, node: ast.ListComp | ast.SetComp | ast.GeneratorExp | ast.DictComp) -> Iterator[None]:
        if len(node.generators) != 1:
            raise UnsupportedOperation("Comprehensions support exactly one 'for' clause")
        generator = node.generators[0]
        if generator.is_async:
            raise UnsupportedOperation("Async comprehensions are not supported")
        if not isinstance(generator.target, ast.Name):
            raise InterpreterRuntimeError("Expected name as loop target")

        name = generator.target.id
        saved = self.env.bindings.get(name, _MISSING)
        iterable = self.eval(generator.iter)
        try:
            for item in self.host.iterate(iterable):
                self.tick()
                self.env.set(name, item)
                if all(self.host.truth(self.eval(cond)) for cond in generator.ifs):
                    yield
        finally:
            if saved is _MISSING:
                self.env.bindings.pop(name, None)
            else:
                self.env.bindings[name] = saved

    def eval_ListComp(self, node: ast.ListComp) -> Any:
        return [self.eval(node.elt) for _ in self.comprehension(node)]

    def eval_GeneratorExp(self, node: ast.GeneratorExp) -> Any:
        return [self.eval(node.elt) for _ in self.comprehension(node)]

    def eval_SetComp(self, node: ast.SetComp) -> Any:
        return self.host.call(set, [[self.eval(node.elt) for _ in self.comprehension(node)]], {})

    def eval_DictComp(self, node: ast.DictComp) -> Any:
        result: dict[Any, Any] = {}
        for _ in self.comprehension(node):
            self.host.set_item(result, self.eval(node.key), self.eval(node.value))
        return result

    # -- calls --------------------------------------------------------------

    def eval_Call(self, node: ast.Call) -> Any:
        args = self.eval_elements(node.args)
        kwargs: dict[str, Any] = {}
        for keyword in node.keywords:
            value = self.eval(keyword.value)
            if keyword.arg is None:
                if not isinstance(value, dict):
                    raise InterpreterRuntimeError("TypeError: '**' requires a mapping")
                kwargs.update(value)
            else:
                kwargs[keyword.arg] = value

        if isinstance(node.func, ast.Name):
            return self.call_name(node.func.id, args, kwargs)
        if isinstance(node.func, ast.Attribute):
            return self.call_attribute(node.func, args, kwargs)
        raise UnsupportedOperation(f"Unsupported call target: {type(node.func).__name__}")

    def call_name(self, name: str, args: list[Any], kwargs: dict[str, Any]) -> Any:
        if name == "final_answer":
            if "answer" in kwargs:
                raise FinalAnswerSignal(to_text(kwargs["answer"]))
            raise FinalAnswerSignal(" ".join(to_text(arg) for arg in args))

        if name == "print":
            line = " ".join(to_text(arg) for arg in args)
            self.env.log(line)
            return line

        if self.host.has_builtin(name):
            return self.host.call_builtin(name, args, kwargs)

        tool = self.registry.get(name) if self.registry is not None else None
        if tool is not None:
            return self.call_tool(tool, args, kwargs)

        if name in self.env.bindings and callable(self.env.bindings[name]):
            return self.host.call(self.env.bindings[name], args, kwargs)

        if name in self.env.functions:
            raise UnsupportedOperation(
                f"Function '{name}' is defined in the script, but calling script-defined "
                "functions is not supported. Inline its body instead."
            )
        raise InterpreterRuntimeError(f"Function '{name}' not found")

    def call_tool(self, tool: "Tool", args: list[Any], kwargs: dict[str, Any]) -> str:
        names = tool.tool_info.parameter_names()
        if len(args) > len(names):
            raise InterpreterRuntimeError(
                f"Tool '{tool.name}' takes {len(names)} positional argument(s) "
                f"but {len(args)} were given"
            )
        payload = {key: self.host.to_host(arg) for key, arg in zip(names, args)}
        payload.update({key: self.host.to_host(val) for key, val in kwargs.items()})
        try:
            return tool.forward_json(payload)
        except AgentError as exc:
            if not exc.retryable:
                raise
            return f"Error: {exc.message}"

    def call_attribute(self, func: ast.Attribute, args: list[Any], kwargs: dict[str, Any]) -> Any:
        receiver = self.host.materialize(self.eval(func.value))
        mutates = func.attr in MUTATING_METHODS and type(receiver) in (list, dict, set)
        if mutates and isinstance(func.value, ast.Attribute):
            raise UnsupportedOperation(
                f"Cannot call '{func.attr}' in place on an attribute. Assign it to a variable first."
            )
        result = self.host.call_method(receiver, func.attr, args, kwargs)

        if mutates:
            updated = self.host.to_value(receiver)
            if self.is_rooted(func.value):
                self.write_back(func.value, updated)
            if func.attr in RETURNS_RECEIVER:
                return updated
        return result


_MISSING = object()


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def parse(source: str) -> ast.Module:
    try:
        return ast.parse(source)
    except SyntaxError as exc:
        raise InterpreterSyntaxError(f"SyntaxError: {exc.msg} (line {exc.lineno})") from exc
    except ValueError as exc:
        raise InterpreterSyntaxError(f"SyntaxError: {exc}") from exc


def evaluate(
    source: str,
    environment: Environment | None = None,
    registry: "ToolRegistry | None" = None,
    max_operations: int = config.MAX_OPERATIONS,
) -> tuple[Any, list[str]]:
    """
    Evaluate a script. Returns the value of the last statement and the
    environment's print log.

    Raises InterpreterSyntaxError before anything runs if the source does
    not parse, FinalAnswerSignal when the script calls final_answer(), and
    the other InterpreterError subclasses for failures part-way through.
    """
    tree = parse(source)
    env = environment if environment is not None else Environment()
    evaluator = ScriptEvaluator(env, registry=registry, max_operations=max_operations)
    value = evaluator.run(tree)
    return value, list(env.print_logs)


def evaluate_python_code(
    code: str,
    registry: "ToolRegistry | None" = None,
    environment: Environment | None = None,
) -> str:
    value, _ = evaluate(code, environment=environment, registry=registry)
    return to_text(value)


class LocalPythonInterpreter:
    """Runs successive code snippets against one persistent Environment."""

    def __init__(
        self,
        registry: "ToolRegistry | None" = None,
        max_operations: int = config.MAX_OPERATIONS,
    ) -> None:
        self.registry = registry
        self.max_operations = max_operations
        self.environment = Environment()

    def forward(self, code: str) -> tuple[str, str]:
        """Returns (text of the last value, print output joined by newlines)."""
        self.environment.print_logs.clear()
        value, logs = evaluate(
            code,
            environment=self.environment,
            registry=self.registry,
            max_operations=self.max_operations,
        )
        return to_text(value), "\n".join(logs)

    def reset(self) -> None:
        self.environment = Environment()
