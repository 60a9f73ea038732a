"""Rules that decide which TheHive messages pass, are excluded or rewritten."""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

import yaml

from phmisp.textutils import get_root_path

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_UINT_PATTERN = re.compile(r"[0-9]+")
_FLOAT_PATTERN = re.compile(r"[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?")
_SPECIAL_FLOATS = {"inf", "+inf", "-inf", "infinity", "+infinity", "-infinity", "nan"}
_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1
_UINT64_MAX = 2**64 - 1
_NOT_PREFIX = "not:"


class RuleError(Exception):
    """A rule file cannot be read or a rule cannot be applied.

    ``rule_index`` is the position of the rule concerned, when there is one.
    """

    def __init__(self, message: str, rule_index: int | None = None) -> None:
        super().__init__(message)
        self.rule_index = rule_index


@dataclass
class RulePass:
    """Lets a message pass when a field holds a value.

    A value starting with ``not:`` matches every value except the rest of it.
    """

    search_field: str = ""
    search_value: str = ""
    statement_expression: bool = False


@dataclass
class RuleReplace:
    """Replaces a value with ``replace_value``."""

    search_field: str = ""
    search_value: str = ""
    replace_value: str = ""


@dataclass
class RuleExclude:
    """Excludes an object; exact match when ``accurate_comparison`` is set."""

    search_field: str = ""
    search_value: str = ""
    accurate_comparison: bool = False


@dataclass
class PassListAnd:
    """Pass rules that must all hold together."""

    list_and: list[RulePass] = field(default_factory=list)


@dataclass
class ExcludeListAnd:
    """Exclude rules of one block."""

    list_and: list[RuleExclude] = field(default_factory=list)


@dataclass
class RuleOptions:
    """All the rules of a rule file."""

    passany: bool = False
    pass_list: list[PassListAnd] = field(default_factory=list)
    replace: list[RuleReplace] = field(default_factory=list)
    exclude: list[ExcludeListAnd] = field(default_factory=list)


# value formatting and parsing


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"

    sign = "-" if value < 0 else ""
    parts = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in parts.digits)
    point = len(digits) + int(parts.exponent)
    exponent = point - 1

    if exponent < -4 or exponent >= 21:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        exp_sign = "+" if exponent >= 0 else "-"
        return f"{sign}{mantissa}e{exp_sign}{abs(exponent):02d}"
    if point <= 0:
        return f"{sign}0.{'0' * -point}{digits}"
    if point >= len(digits):
        return f"{sign}{digits}{'0' * (point - len(digits))}"
    return f"{sign}{digits[:point]}.{digits[point:]}"


def _sprint(value: Any) -> str:
    """Format a value the way rule values are written."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_sprint(item) for item in value) + "]"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda item: _sprint(item[0]))
        return "map[" + " ".join(f"{_sprint(k)}:{_sprint(v)}" for k, v in items) + "]"
    return str(value)


def _syntax_error(text: str) -> ValueError:
    return ValueError(f'parsing "{text}": invalid syntax')


def _range_error(text: str) -> ValueError:
    return ValueError(f'parsing "{text}": value out of range')


def _parse_int(text: str) -> int:
    if not _INT_PATTERN.fullmatch(text):
        raise _syntax_error(text)
    number = int(text)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise _range_error(text)
    return number


def _parse_uint(text: str) -> int:
    if not _UINT_PATTERN.fullmatch(text):
        raise _syntax_error(text)
    number = int(text)
    if number > _UINT64_MAX:
        raise _range_error(text)
    return number


def _parse_float(text: str) -> float:
    lowered = text.lower()
    if lowered in _SPECIAL_FLOATS:
        return float(lowered)
    if _FLOAT_PATTERN.fullmatch(text):
        number = float(text)
        if math.isinf(number):
            raise _range_error(text)
        return number
    if "0x" in lowered:
        try:
            return float.fromhex(text)
        except (ValueError, OverflowError):
            raise _syntax_error(text) from None
    raise _syntax_error(text)


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise _syntax_error(text)


_CONVERTERS = {
    "string": str,
    "int": _parse_int,
    "uint": _parse_uint,
    "float": _parse_float,
    "bool": _parse_bool,
}


# decoding of the rule file


def _lookup(mapping: Mapping[str, Any], key: str) -> Any:
    """Look a key up ignoring letter case."""
    wanted = key.lower()
    for name, value in mapping.items():
        if str(name).lower() == wanted:
            return value
    return None


def _as_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise RuleError(f"'{what}' expected a map, got '{type(value).__name__}'")
    return value


def _as_list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise RuleError(f"'{what}' expected a list, got '{type(value).__name__}'")
    return value


def _as_str(value: Any, what: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (str, int, float)):
        return _sprint(value)
    raise RuleError(f"'{what}' expected a string, got '{type(value).__name__}'")


def _as_bool(value: Any, what: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        if value == "":
            return False
        try:
            return _parse_bool(value)
        except ValueError:
            raise RuleError(f"cannot parse '{what}' as bool: {value!r}") from None
    raise RuleError(f"'{what}' expected a bool, got '{type(value).__name__}'")


def _decode_pass(raw: Any) -> RulePass:
    item = _as_mapping(raw, "listAnd")
    return RulePass(
        search_field=_as_str(_lookup(item, "searchField"), "searchField"),
        search_value=_as_str(_lookup(item, "searchValue"), "searchValue"),
        statement_expression=_as_bool(
            _lookup(item, "statementExpression"), "statementExpression"
        ),
    )


def _decode_exclude(raw: Any) -> RuleExclude:
    item = _as_mapping(raw, "listAnd")
    return RuleExclude(
        search_field=_as_str(_lookup(item, "searchField"), "searchField"),
        search_value=_as_str(_lookup(item, "searchValue"), "searchValue"),
        accurate_comparison=_as_bool(
            _lookup(item, "accurateComparison"), "accurateComparison"
        ),
    )


def _decode_replace(raw: Any) -> RuleReplace:
    item = _as_mapping(raw, "REPLACE")
    return RuleReplace(
        search_field=_as_str(_lookup(item, "searchField"), "searchField"),
        search_value=_as_str(_lookup(item, "searchValue"), "searchValue"),
        replace_value=_as_str(_lookup(item, "replaceValue"), "replaceValue"),
    )


class ListRule:
    """A set of rules and the handlers that apply them."""

    def __init__(self, rules: RuleOptions | None = None) -> None:
        self.rules = rules if rules is not None else RuleOptions()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ListRule:
        """Build the rules from a decoded rule document holding ``RULES``."""
        if not isinstance(data, Mapping) or _lookup(data, "RULES") is None:
            raise RuleError("the \"RULES\" property is missing")
        body = _as_mapping(_lookup(data, "RULES"), "RULES")

        pass_list = [
            PassListAnd(
                [
                    _decode_pass(item)
                    for item in _as_list(
                        _lookup(_as_mapping(block, "PASS"), "listAnd"), "listAnd"
                    )
                ]
            )
            for block in _as_list(_lookup(body, "PASS"), "PASS")
        ]
        exclude = [
            ExcludeListAnd(
                [
                    _decode_exclude(item)
                    for item in _as_list(
                        _lookup(_as_mapping(block, "EXCLUDE"), "listAnd"), "listAnd"
                    )
                ]
            )
            for block in _as_list(_lookup(body, "EXCLUDE"), "EXCLUDE")
        ]
        replace = [
            _decode_replace(item) for item in _as_list(_lookup(body, "REPLACE"), "REPLACE")
        ]
        return cls(
            RuleOptions(
                passany=_as_bool(_lookup(body, "PASSANY"), "PASSANY"),
                pass_list=pass_list,
                replace=replace,
                exclude=exclude,
            )
        )

    def replacement_rule_handler(
        self, search_value_type: str, field_name: str, current_value: Any
    ) -> tuple[Any, int]:
        """Apply the first matching REPLACE rule to ``current_value``.

        Returns the (possibly replaced) value and the index of the rule
        that matched, or ``0`` when none did. The replacement is converted
        to ``search_value_type``; a failed conversion raises ``RuleError``.
        """
        current = _sprint(current_value)
        convert = _CONVERTERS.get(search_value_type, str)

        for index, rule in enumerate(self.rules.replace):
            if rule.search_value != current:
                continue
            if rule.search_field and rule.search_field != field_name:
                continue
            try:
                return convert(rule.replace_value), index
            except ValueError as exc:
                raise RuleError(str(exc), rule_index=index) from exc

        return current_value, 0

    def pass_rule_handler(self, field_name: str, current_value: Any) -> None:
        """Mark every PASS rule that ``field_name`` and ``current_value`` satisfy."""
        current = _sprint(current_value)
        for block in self.rules.pass_list:
            for rule in block.list_and:
                if rule.search_field != field_name:
                    continue
                if rule.search_value.startswith(_NOT_PREFIX):
                    if current == rule.search_value[len(_NOT_PREFIX):]:
                        continue
                elif current != rule.search_value:
                    continue
                rule.statement_expression = True

    def clean_statement_expression_rule_pass(self) -> None:
        """Reset the matches of every PASS rule."""
        for block in self.rules.pass_list:
            for rule in block.list_and:
                rule.statement_expression = False

    def some_pass_rule_is_true(self) -> bool:
        """Whether all rules of at least one PASS block have matched."""
        return any(
            all(rule.statement_expression for rule in block.list_and)
            for block in self.rules.pass_list
        )

    def exclude_rule_handler(
        self, field_name: str, current_value: Any
    ) -> tuple[int, int] | None:
        """Return the (block, rule) address of the first EXCLUDE rule hit, or ``None``."""
        current = _sprint(current_value)
        for block_index, block in enumerate(self.rules.exclude):
            for rule_index, rule in enumerate(block.list_and):
                if rule.search_field != field_name:
                    continue
                if rule.accurate_comparison:
                    hit = current == rule.search_value
                else:
                    hit = rule.search_value in current
                if hit:
                    return block_index, rule_index
        return None

    def verification(self) -> list[str]:
        """Drop incomplete rules and return a warning for each one dropped."""
        warnings: list[str] = []

        pass_list: list[PassListAnd] = []
        for block in self.rules.pass_list:
            if not block.list_and:
                continue
            kept: list[RulePass] = []
            for number, rule in enumerate(block.list_and, start=1):
                if not rule.search_field:
                    warnings.append(
                        f"warning: rule type 'PASS', number rule '{number}', "
                        "the 'searchField' property should not be empty"
                    )
                    continue
                if not rule.search_value:
                    warnings.append(
                        f"warning: rule type 'PASS', number rule '{number}', "
                        "the 'searchValue' property should not be empty"
                    )
                    continue
                kept.append(RulePass(rule.search_field, rule.search_value))
            pass_list.append(PassListAnd(kept))

        replace: list[RuleReplace] = []
        for number, rule in enumerate(self.rules.replace, start=1):
            if not rule.search_field and not rule.search_value:
                warnings.append(
                    f"warning: rule type 'REPLACE', number rule '{number}', one of the "
                    "properties 'searchField' or 'searchValue' must be filled in"
                )
                continue
            replace.append(
                RuleReplace(rule.search_field, rule.search_value, rule.replace_value)
            )

        exclude: list[ExcludeListAnd] = []
        for block in self.rules.exclude:
            if not block.list_and:
                continue
            kept_exclude: list[RuleExclude] = []
            for number, rule in enumerate(block.list_and, start=1):
                if not rule.search_field:
                    warnings.append(
                        f"warning: rule type 'EXCLUDE', number rule '{number}', "
                        "the 'searchField' property should not be empty"
                    )
                    continue
                if not rule.search_value:
                    warnings.append(
                        f"warning: rule type 'EXCLUDE', number rule '{number}', "
                        "the 'searchValue' property should not be empty"
                    )
                    continue
                kept_exclude.append(
                    RuleExclude(
                        rule.search_field, rule.search_value, rule.accurate_comparison
                    )
                )
            exclude.append(ExcludeListAnd(kept_exclude))

        if not pass_list and not self.rules.passany:
            warnings.append(
                f"warning: rule type 'PASSANY' is '{_sprint(self.rules.passany)}', "
                "however rule type 'PASS' is empty too"
            )

        self.rules.pass_list = pass_list
        self.rules.replace = replace
        self.rules.exclude = exclude
        return warnings


def load_rules(path: str | os.PathLike[str]) -> tuple[ListRule, list[str]]:
    """Read a YAML rule file; return the checked rules and their warnings."""
    try:
        with open(path, encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except OSError as exc:
        raise RuleError(str(exc)) from exc
    except yaml.YAMLError as exc:
        raise RuleError(str(exc)) from exc

    if not isinstance(document, Mapping) or _lookup(document, "RULES") is None:
        raise RuleError(
            f"the \"RULES\" property is missing in the file \"{os.path.basename(path)}\""
        )

    rules = ListRule.from_mapping(document)
    return rules, rules.verification()


def new_list_rule(
    root_dir: str, work_dir: str, file_name: str
) -> tuple[ListRule, list[str]]:
    """Read the rule file ``file_name`` from ``work_dir`` under the application root."""
    return load_rules(os.path.join(get_root_path(root_dir), work_dir, file_name))