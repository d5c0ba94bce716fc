from slate.slate_datatypes import HAS_MISSING_ARGUMENTS, ParseFailure
from slate.slate_document import Document
from slate.slate_parser import parse, parse_bullet
from slate.slate_runtime import FUNCTIONS, FunctionDef, FunctionRegistry, OutlineRunner, slate_function
from slate.slate_scope import Scope
from slate import slate_functions  # registers the domain functions
from slate.slate_formulas import can_formula_be_repeated, get_pattern, repeat_formula
from slate.slate_suggestions import get_grouped_suggested_functions, get_parameters, get_suggested_functions
