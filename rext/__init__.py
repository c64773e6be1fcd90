"""rext - plain-text HTTP request engine."""

from rext.parser import parse, parse_file
from rext.runner import Runner, resolve_request
from rext.variables import VariableStore

__version__ = "0.1.0"

__all__ = ["Runner", "VariableStore", "parse", "parse_file", "resolve_request"]
