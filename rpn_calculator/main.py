# Infix calculator built on Reverse Polish Notation: a shunting-yard converter turns
# whitespace-separated infix expressions into postfix, and a stack machine evaluates them.
#
# - Tokens must be separated by whitespace: "( 3 + 5 ) * 2", not "(3+5)*2".
# - Binary operators: + - * / % ^. Unary functions: abs sqr sign, written prefix ("sqr ( 2 )").
# - Precedence only, no associativity rules: every operator is left-associative, '^' included,
#   so "2 ^ 3 ^ 2" is (2 ^ 3) ^ 2 == 64.
# - Arithmetic is IEEE-754 float64. Division or modulo by zero yields inf/nan instead of raising.
# - Parentheses are only counted up front; structural problems surface in the converter.
#
# The operator tables are built once at import and are read-only. The variable store is a mapping
# owned by the caller; the calculator only reads from it.

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import sys
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from dotenv import load_dotenv
from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import FileHistory
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

# --------------------------
# Exceptions
# --------------------------

class CalculatorError(Exception):
    """Base class for calculator errors."""
    pass

class InvalidTokenError(CalculatorError):
    """Raised for a token that is not a number, operator, parenthesis or known variable."""

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Invalid token: {token}")

class InsufficientOperandsError(CalculatorError):
    """Raised when an operator finds too few values on the evaluation stack."""

    def __init__(self, operator: str):
        self.operator = operator
        super().__init__(f"Not enough operands for operator: {operator}")

class MalformedExpressionError(CalculatorError):
    """Raised when evaluation does not end with exactly one value on the stack."""

    def __init__(self, message: str = "Invalid expression"):
        super().__init__(message)

class MismatchedParenthesisError(CalculatorError):
    """Raised for unbalanced parentheses or a ')' without a matching '('."""

    def __init__(self, message: str = "Mismatched parentheses"):
        super().__init__(message)

# --------------------------
# Operator tables
# --------------------------

BINARY_OPERATORS: Mapping[str, Callable[[np.float64, np.float64], np.float64]] = MappingProxyType({
    '+': np.add,
    '-': np.subtract,
    '*': np.multiply,
    '/': np.divide,
    '%': np.fmod,   # truncated remainder, sign follows the dividend
    '^': np.power,
})

UNARY_OPERATORS: Mapping[str, Callable[[np.float64], np.float64]] = MappingProxyType({
    'abs': np.abs,
    'sqr': lambda a: a * a,
    'sign': np.sign,
})

# Higher number = binds tighter. '(' is 0 so comparisons never pop it.
PRECEDENCE: Mapping[str, int] = MappingProxyType({
    '+': 1, '-': 1,
    '*': 2, '/': 2, '%': 2,
    '^': 3,
    'abs': 4, 'sqr': 4, 'sign': 4,
    '(': 0,
})

TokenInput = Union[str, Sequence[str]]

def _parse_number(token: str) -> Optional[float]:
    """Return the value of a numeric literal, or None if the token is not one."""
    try:
        return float(token)
    except ValueError:
        return None

def format_number(value: float) -> str:
    """Render a float for display and for re-parsing as a postfix token.

    Integral values print without a fractional part ("16", not "16.0"); nan and
    infinities print as NaN / Infinity / -Infinity, all of which float() accepts.
    """
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)

# --------------------------
# Results
# --------------------------

class ProcessResult(BaseModel):
    """Postfix text and final value produced by RPNCalculator.process()."""
    postfix: str
    result: float

    def format_lines(self) -> List[str]:
        return [
            f"Postfix expression: {self.postfix}",
            f"Result: {format_number(self.result)}",
        ]

# --------------------------
# Calculator
# --------------------------

class RPNCalculator:
    """Converts infix token streams to postfix and evaluates postfix token streams.

    Args:
        variables: Read-only lookup of variable name to value. The mapping is kept by
            reference, so a caller may add entries between calls; the calculator never
            writes to it.
    """

    def __init__(self, variables: Optional[Mapping[str, float]] = None):
        self.variables: Mapping[str, float] = variables if variables is not None else MappingProxyType({})

    @staticmethod
    def is_operator(token: str) -> bool:
        return token in BINARY_OPERATORS

    @staticmethod
    def is_unary_operator(token: str) -> bool:
        return token in UNARY_OPERATORS

    @staticmethod
    def tokenize(text: str) -> List[str]:
        """Split on runs of whitespace. Empty input gives an empty list."""
        return text.split()

    @classmethod
    def _as_tokens(cls, tokens: TokenInput) -> List[str]:
        if isinstance(tokens, str):
            return cls.tokenize(tokens)
        return list(tokens)

    @staticmethod
    def check_balance(expression: str) -> bool:
        """Return True when the raw string holds as many '(' as ')' characters.

        Counts characters, not tokens, and ignores ordering: ") (" passes.
        """
        opening = 0
        closing = 0
        for character in expression:
            if character == '(':
                opening += 1
            elif character == ')':
                closing += 1
        return opening == closing

    def convert(self, infix_tokens: TokenInput) -> List[str]:
        """Shunting-yard conversion of infix tokens to postfix tokens.

        Raises:
            InvalidTokenError: for a token that is neither numeric, an operator,
                a parenthesis nor a known variable.
            MismatchedParenthesisError: for a ')' with no '(' left on the stack.
        """
        tokens = self._as_tokens(infix_tokens)
        output: List[str] = []
        operator_stack: List[str] = []

        for token in tokens:
            if _parse_number(token) is not None:
                output.append(token)
            elif self.is_operator(token) or self.is_unary_operator(token):
                while operator_stack and PRECEDENCE[operator_stack[-1]] >= PRECEDENCE[token]:
                    output.append(operator_stack.pop())
                operator_stack.append(token)
            elif token == '(':
                operator_stack.append(token)
            elif token == ')':
                while operator_stack and operator_stack[-1] != '(':
                    output.append(operator_stack.pop())
                if not operator_stack:
                    raise MismatchedParenthesisError("Unmatched ')' in expression")
                operator_stack.pop()
            elif token in self.variables:
                output.append(format_number(self.variables[token]))
            else:
                raise InvalidTokenError(token)

        # A stray '(' is emitted as well; evaluate() rejects it as an invalid token.
        while operator_stack:
            output.append(operator_stack.pop())

        logger.debug(f"Converted {' '.join(tokens)!r} to {' '.join(output)!r}")
        return output

    def evaluate(self, postfix_tokens: TokenInput) -> float:
        """Evaluate postfix tokens on a value stack and return the single remaining value.

        Raises:
            InvalidTokenError: for an unknown token.
            InsufficientOperandsError: when an operator underflows the stack.
            MalformedExpressionError: when anything but one value is left at the end.
        """
        tokens = self._as_tokens(postfix_tokens)
        stack: List[np.float64] = []

        with np.errstate(all='ignore'):
            for token in tokens:
                number = _parse_number(token)
                if number is not None:
                    stack.append(np.float64(number))
                elif self.is_operator(token):
                    if len(stack) < 2:
                        raise InsufficientOperandsError(token)
                    b = stack.pop()
                    a = stack.pop()
                    stack.append(BINARY_OPERATORS[token](a, b))
                elif self.is_unary_operator(token):
                    if len(stack) < 1:
                        raise InsufficientOperandsError(token)
                    a = stack.pop()
                    stack.append(UNARY_OPERATORS[token](a))
                elif token in self.variables:
                    stack.append(np.float64(self.variables[token]))
                else:
                    raise InvalidTokenError(token)

        if len(stack) != 1:
            raise MalformedExpressionError()

        result = float(stack.pop())
        logger.debug(f"Evaluated {' '.join(tokens)!r} = {result!r}")
        return result

    def process(self, expression: str) -> ProcessResult:
        """Balance check, conversion and evaluation of a raw infix string."""
        if not self.check_balance(expression):
            logger.info(f"Rejected unbalanced expression: {expression!r}")
            raise MismatchedParenthesisError(
                "Unbalanced parentheses detected. Please fix the expression."
            )
        postfix = " ".join(self.convert(self.tokenize(expression)))
        result = self.evaluate(self.tokenize(postfix))
        return ProcessResult(postfix=postfix, result=result)

# Module-level entry points on a calculator with no variables.
_default_calculator = RPNCalculator()

def tokenize(text: str) -> List[str]:
    return _default_calculator.tokenize(text)

def convert(infix_tokens: TokenInput) -> List[str]:
    return _default_calculator.convert(infix_tokens)

def evaluate(postfix_tokens: TokenInput) -> float:
    return _default_calculator.evaluate(postfix_tokens)

def check_balance(expression: str) -> bool:
    return _default_calculator.check_balance(expression)

def process(expression: str) -> ProcessResult:
    return _default_calculator.process(expression)

# --------------------------
# Settings and variables
# --------------------------

DEFAULT_HISTORY_FILE = "~/.rpn_calc_history"
_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

# field name -> environment variable
_SETTINGS_ENV = {
    'log_level': 'RPN_CALC_LOG_LEVEL',
    'history_file': 'RPN_CALC_HISTORY_FILE',
    'variables_file': 'RPN_CALC_VARIABLES_FILE',
}

class CalculatorSettings(BaseModel):
    """Shell configuration; see load_settings()."""
    log_level: str = 'WARNING'
    history_file: str = os.path.expanduser(DEFAULT_HISTORY_FILE)
    variables_file: Optional[str] = None

    @field_validator('log_level')
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level {v!r}; expected one of {', '.join(_LOG_LEVELS)}")
        return level

    @field_validator('history_file')
    @classmethod
    def history_file_must_not_be_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('History file cannot be empty')
        return os.path.expanduser(v.strip())

    @field_validator('variables_file')
    @classmethod
    def blank_variables_file_means_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return os.path.expanduser(v.strip())

def load_settings(env_file: Optional[str] = None) -> CalculatorSettings:
    """Load .env (if any) and build settings from RPN_CALC_* environment variables.

    Raises pydantic's ValidationError (a ValueError) for invalid values.
    """
    load_dotenv(env_file)
    values = {}
    for field, env_var in _SETTINGS_ENV.items():
        value = os.getenv(env_var)
        if value is not None:
            values[field] = value
    return CalculatorSettings(**values)

def _validate_variable(name: object, value: object) -> Tuple[str, float]:
    """Check a variable definition and return it normalized, or raise ValueError."""
    if not isinstance(name, str) or not name.isidentifier():
        raise ValueError(f"Invalid variable name: {name!r}")
    if name in PRECEDENCE:
        raise ValueError(f"Variable name {name!r} is reserved for an operator")
    if _parse_number(name) is not None:
        raise ValueError(f"Variable name {name!r} reads as a number")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Variable {name!r} must be a number, got {value!r}")
    try:
        return name, float(value)
    except OverflowError:
        raise ValueError(f"Variable {name!r} is out of range")

def load_variables(path: str) -> Dict[str, float]:
    """Read a JSON object of variable name -> number."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Variables file must contain a JSON object: {path}")
    variables: Dict[str, float] = {}
    for name, value in data.items():
        name, value = _validate_variable(name, value)
        variables[name] = value
    logger.info(f"Loaded {len(variables)} variables from {path}")
    return variables

# --------------------------
# REPL, Help
# --------------------------

_HELP_TOPICS: Dict[str, str] = {
    'general': (
        "RPN calculator help:\n"
        "Enter an infix expression with every token separated by spaces.\n"
        "The postfix (RPN) form and the result are printed.\n"
        "Examples:\n"
        "  ( 3 + 5 ) * 2        -> 3 5 + 2 *  = 16\n"
        "  sqr ( 2 )            -> 2 sqr      = 4\n"
        "  abs ( -10 )          -> -10 abs    = 10\n"
        "Commands:\n"
        "  :help, help [topic]  show help (topics: operators, variables)\n"
        "  :vars                list variables\n"
        "  :set <name> <value>  define a variable\n"
        "  :unset <name>        remove a variable\n"
        "  :load <file>         load variables from a JSON object\n"
        "  :exit, :quit         exit\n"
    ),
    'operators': (
        "Operators and precedence (high -> low):\n"
        "  abs sqr sign   unary functions, written before their operand\n"
        "  ^              power\n"
        "  * / %          multiply, divide, remainder (sign of the dividend)\n"
        "  + -            add, subtract\n"
        "Notes:\n"
        "  - All operators are left-associative: 2 ^ 3 ^ 2 == 64.\n"
        "  - Negative numbers are single tokens: -10, not - 10.\n"
        "  - Division by zero gives Infinity or NaN.\n"
    ),
    'variables': (
        "Variables:\n"
        "  :set x 2.5 defines x; x can then be used anywhere a number can.\n"
        "  Variables are substituted by value in the postfix output.\n"
        "  Names must be identifiers and cannot be operator names.\n"
        "  Set RPN_CALC_VARIABLES_FILE or pass --vars to preload a JSON file.\n"
    ),
}

def show_help(topic: Optional[str] = None) -> str:
    """Return help text for topic or general if None."""
    if not topic:
        return _HELP_TOPICS['general']
    key = topic.lower()
    return _HELP_TOPICS.get(key, f"No help available for topic '{topic}'")

class REPL:
    """Read-Eval-Print Loop around RPNCalculator.

    The REPL owns the variable store; :set, :unset and :load change it and the
    calculator sees the changes on its next call.
    """
    PROMPT = '> '

    def __init__(self, variables: Optional[Mapping[str, float]] = None,
                 settings: Optional[CalculatorSettings] = None):
        self.settings = settings or CalculatorSettings()
        self.variables: Dict[str, float] = dict(variables or {})
        self.calculator = RPNCalculator(self.variables)

    def _completion_words(self) -> List[str]:
        return sorted(UNARY_OPERATORS) + sorted(self.variables) + [':help', ':vars', ':set', ':unset', ':load', ':exit']

    def _run_command(self, cmd: str, args: List[str]) -> Tuple[bool, str]:
        """Execute a colon command. Raises EOFError for exit/quit."""
        cmd_lower = cmd.lower()
        if cmd_lower in {'exit', 'quit'}:
            raise EOFError()
        if cmd_lower == 'help':
            return True, show_help(args[0] if args else None)
        if cmd_lower == 'vars':
            if not self.variables:
                return True, "(no variables)"
            return True, "\n".join(f"{k} = {format_number(v)}" for k, v in sorted(self.variables.items()))
        if cmd_lower == 'set':
            if len(args) != 2:
                return False, "Usage: :set <name> <value>"
            value = _parse_number(args[1])
            if value is None:
                return False, f"Not a number: {args[1]}"
            try:
                name, value = _validate_variable(args[0], value)
            except ValueError as e:
                return False, f"Error: {e}"
            self.variables[name] = value
            return True, f"{name} = {format_number(value)}"
        if cmd_lower == 'unset':
            if len(args) != 1:
                return False, "Usage: :unset <name>"
            if self.variables.pop(args[0], None) is None:
                return False, f"Unknown variable: {args[0]}"
            return True, f"Removed {args[0]}"
        if cmd_lower == 'load':
            if not args:
                return False, "Usage: :load <file>"
            try:
                loaded = load_variables(args[0])
            except (OSError, ValueError) as e:
                return False, f"Error loading variables: {e}"
            self.variables.update(loaded)
            return True, f"Loaded {len(loaded)} variables from {args[0]}"
        return False, f"Unknown command: {cmd}"

    def evaluate_line(self, line: str) -> Tuple[bool, str]:
        """Evaluate a single line (either command or expression). Returns (ok, output)."""
        s = line.strip()
        if not s:
            return True, ""
        if s.startswith(':'):
            parts = s[1:].split()
            if not parts:
                return False, "No command specified. Use :help for available commands."
            return self._run_command(parts[0], parts[1:])
        if s.lower() == 'help' or s.lower().startswith('help '):
            parts = s.split(None, 1)
            return True, show_help(parts[1].strip() if len(parts) > 1 else None)

        try:
            outcome = self.calculator.process(s)
        except CalculatorError as e:
            return False, f"Error: {e}"
        except Exception as e:
            logger.exception(f"Unexpected failure evaluating {s!r}")
            return False, f"Unhandled error: {e}"
        return True, "\n".join(outcome.format_lines())

    def repl_loop(self) -> None:
        """Interactive loop with prompt_toolkit history and completion."""
        print("RPN calculator. Enter a space-separated infix expression, e.g. ( 3 + 5 ) * 2")
        print("Type :help for help. Ctrl-D or :exit to quit.")
        session = PromptSession(history=FileHistory(self.settings.history_file))
        while True:
            try:
                completer = WordCompleter(self._completion_words(), ignore_case=True)
                line = session.prompt(self.PROMPT, completer=completer)
            except KeyboardInterrupt:
                print("^C")
                continue
            except EOFError:
                print("Exiting.")
                break
            if not line.strip():
                continue
            try:
                ok, out = self.evaluate_line(line)
            except EOFError:
                print("Exiting.")
                break
            print(out)

# --------------------------
# Entry point
# --------------------------

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="rpn-calc",
        description="Evaluate space-separated infix expressions through Reverse Polish Notation.",
    )
    parser.add_argument(
        "-e", "--expression",
        type=str,
        help="Evaluate one expression, print its postfix form and result, and exit.",
    )
    parser.add_argument(
        "--vars",
        type=str,
        help="Path to a JSON file of variable values (default: RPN_CALC_VARIABLES_FILE).",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="Logging level (default: RPN_CALC_LOG_LEVEL or WARNING).",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        help="Path to a .env file with RPN_CALC_* settings.",
    )
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.env_file)
        if args.log_level:
            settings = CalculatorSettings(**{**settings.model_dump(), 'log_level': args.log_level})
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    variables: Dict[str, float] = {}
    variables_file = args.vars or settings.variables_file
    if variables_file:
        try:
            variables = load_variables(variables_file)
        except (OSError, ValueError) as e:
            print(f"Error loading variables: {e}", file=sys.stderr)
            return 2

    if args.expression is not None:
        calculator = RPNCalculator(variables)
        try:
            outcome = calculator.process(args.expression)
        except CalculatorError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        for line in outcome.format_lines():
            print(line)
        return 0

    REPL(variables, settings).repl_loop()
    return 0

if __name__ == '__main__':
    sys.exit(main())
