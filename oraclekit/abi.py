"""
Typed single-function descriptors.

A contract call is described once, up front, by a FunctionDescriptor
instead of being re-parsed from a signature string wherever it is used.
Accepted inputs are human-readable signatures such as

    function updateWeather(int256 temperature, uint8 precipitationProbability) external
    function currentWeather() view returns (int256, uint8, uint256 lastUpdated)

or a JSON ABI holding exactly one function entry.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from web3 import Web3

from .exceptions import AbiError

_FUNCTION_RE = re.compile(r"^\s*function\s+([A-Za-z_$][A-Za-z0-9_$]*)\s*\((.*)$", re.DOTALL)
_ARRAY_SUFFIX_RE = re.compile(r"^(.*)\[(\d*)\]$")

_DATA_LOCATIONS = {"memory", "calldata", "storage", "indexed", "payable"}
_MUTABILITIES = {"pure", "view", "payable", "nonpayable"}


@dataclass(frozen=True)
class AbiParam:
    """A single input or output parameter"""
    type: str
    name: str = ""


def _normalize_type(abi_type: str) -> str:
    abi_type = abi_type.strip()
    match = _ARRAY_SUFFIX_RE.match(abi_type)
    if match:
        return f"{_normalize_type(match.group(1))}[{match.group(2)}]"
    if abi_type == "uint":
        return "uint256"
    if abi_type == "int":
        return "int256"
    return abi_type


def _split_top_level(text: str) -> List[str]:
    """Split on commas that are not nested inside parentheses"""
    parts, depth, current = [], 0, []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    tail = "".join(current)
    if tail.strip():
        parts.append(tail)
    return [p.strip() for p in parts]


def _take_parenthesized(text: str) -> Tuple[str, str]:
    """Given text right after an opening parenthesis, return (inside, rest)"""
    depth = 1
    for index, char in enumerate(text):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return text[:index], text[index + 1:]
    raise AbiError("Unbalanced parentheses in function signature")


def _parse_param(text: str) -> AbiParam:
    if text.startswith("("):
        inner, rest = _take_parenthesized(text[1:])
        suffix = rest.strip().split()
        array_part = ""
        while suffix and suffix[0].startswith("["):
            array_part += suffix.pop(0)
        tuple_type = "(" + ",".join(_parse_param(p).type for p in _split_top_level(inner)) + ")"
        names = [token for token in suffix if token not in _DATA_LOCATIONS]
        return AbiParam(type=tuple_type + array_part, name=names[-1] if names else "")

    tokens = [token for token in text.split() if token not in _DATA_LOCATIONS]
    if not tokens:
        raise AbiError(f"Empty parameter in function signature: {text!r}")
    if len(tokens) > 2:
        raise AbiError(f"Unexpected parameter declaration: {text!r}")
    return AbiParam(type=_normalize_type(tokens[0]), name=tokens[1] if len(tokens) == 2 else "")


def _parse_params(text: str) -> Tuple[AbiParam, ...]:
    return tuple(_parse_param(part) for part in _split_top_level(text))


def _abi_entry_type(param: Dict[str, Any]) -> str:
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        components = ",".join(_abi_entry_type(c) for c in param.get("components", []))
        return "(" + components + ")" + abi_type[len("tuple"):]
    return _normalize_type(abi_type)


@dataclass(frozen=True)
class FunctionDescriptor:
    """
    Explicit description of one contract function.

    Attributes:
        name: Function name
        inputs: Input parameters, in order
        outputs: Output parameters, in order
        state_mutability: pure, view, payable or nonpayable
    """
    name: str
    inputs: Tuple[AbiParam, ...] = ()
    outputs: Tuple[AbiParam, ...] = ()
    state_mutability: str = "nonpayable"

    @classmethod
    def parse(cls, source: Union[str, Dict[str, Any], List[Dict[str, Any]], "FunctionDescriptor"]) -> "FunctionDescriptor":
        """
        Build a descriptor from a human-readable signature or a JSON ABI.

        Args:
            source: Signature string, JSON ABI string, ABI entry or one-entry ABI list

        Returns:
            FunctionDescriptor

        Raises:
            AbiError: If the source does not describe exactly one function
        """
        if isinstance(source, FunctionDescriptor):
            return source
        if isinstance(source, str):
            stripped = source.strip()
            if stripped.startswith("[") or stripped.startswith("{"):
                try:
                    source = json.loads(stripped)
                except json.JSONDecodeError as e:
                    raise AbiError(f"Invalid JSON ABI: {e}") from e
            else:
                return cls._parse_human(stripped)
        return cls._parse_json(source)

    @classmethod
    def _parse_human(cls, text: str) -> "FunctionDescriptor":
        if not text.startswith("function"):
            text = "function " + text
        match = _FUNCTION_RE.match(text)
        if not match:
            raise AbiError(f"Could not parse function signature: {text!r}")

        name = match.group(1)
        inputs_text, rest = _take_parenthesized(match.group(2))
        inputs = _parse_params(inputs_text)

        outputs: Tuple[AbiParam, ...] = ()
        mutability = "nonpayable"
        rest = rest.strip().rstrip(";").strip()
        returns_at = rest.find("returns")
        if returns_at >= 0:
            modifiers = rest[:returns_at].split()
            tail = rest[returns_at + len("returns"):].strip()
            if not tail.startswith("("):
                raise AbiError(f"Malformed returns clause in: {text!r}")
            outputs_text, trailing = _take_parenthesized(tail[1:])
            if trailing.strip():
                raise AbiError(f"Unexpected text after returns clause: {trailing.strip()!r}")
            outputs = _parse_params(outputs_text)
        else:
            modifiers = rest.split()

        for modifier in modifiers:
            if modifier in _MUTABILITIES:
                mutability = modifier
            elif modifier not in ("external", "public", "virtual", "override"):
                raise AbiError(f"Unknown function modifier {modifier!r} in: {text!r}")

        return cls(name=name, inputs=inputs, outputs=outputs, state_mutability=mutability)

    @classmethod
    def _parse_json(cls, abi: Union[Dict[str, Any], List[Dict[str, Any]]]) -> "FunctionDescriptor":
        entries = abi if isinstance(abi, list) else [abi]
        functions = [e for e in entries if e.get("type", "function") == "function"]
        if len(functions) != 1:
            raise AbiError(f"Expected exactly one function in ABI, found {len(functions)}")
        entry = functions[0]
        if "name" not in entry:
            raise AbiError("ABI function entry has no name")

        mutability = entry.get("stateMutability")
        if mutability is None:
            mutability = "view" if entry.get("constant") else "nonpayable"

        return cls(
            name=entry["name"],
            inputs=tuple(AbiParam(_abi_entry_type(p), p.get("name", "")) for p in entry.get("inputs", [])),
            outputs=tuple(AbiParam(_abi_entry_type(p), p.get("name", "")) for p in entry.get("outputs", [])),
            state_mutability=mutability,
        )

    @property
    def input_types(self) -> List[str]:
        return [p.type for p in self.inputs]

    @property
    def output_types(self) -> List[str]:
        return [p.type for p in self.outputs]

    @property
    def signature(self) -> str:
        """Canonical signature used for the selector, e.g. updateWeather(int256,uint8)"""
        return f"{self.name}({','.join(self.input_types)})"

    @property
    def selector(self) -> bytes:
        return bytes(Web3.keccak(text=self.signature)[:4])

    def to_human(self) -> str:
        """Canonical human-readable form, stable across formatting of the source"""
        def render(params: Sequence[AbiParam]) -> str:
            return ", ".join(f"{p.type} {p.name}" if p.name else p.type for p in params)

        text = f"function {self.name}({render(self.inputs)})"
        if self.state_mutability in ("view", "pure", "payable"):
            text += f" {self.state_mutability}"
        if self.outputs:
            text += f" returns ({render(self.outputs)})"
        return text

    def to_abi(self) -> Dict[str, Any]:
        """JSON ABI entry for this function (tuple components are not expanded)"""
        return {
            "type": "function",
            "name": self.name,
            "inputs": [{"name": p.name, "type": p.type} for p in self.inputs],
            "outputs": [{"name": p.name, "type": p.type} for p in self.outputs],
            "stateMutability": self.state_mutability,
        }

    def encode_call(self, args: Sequence[Any] = ()) -> str:
        """
        Encode calldata for this function.

        Args:
            args: Argument values, in input order

        Returns:
            0x-prefixed calldata hex string

        Raises:
            AbiError: If the arguments don't match the inputs
        """
        args = list(args)
        if len(args) != len(self.inputs):
            raise AbiError(
                f"{self.name} expects {len(self.inputs)} arguments, got {len(args)}"
            )
        coerced = [coerce_value(p.type, value) for p, value in zip(self.inputs, args)]
        try:
            encoded = abi_encode(self.input_types, coerced)
        except Exception as e:
            raise AbiError(f"Failed to encode arguments for {self.signature}: {e}") from e
        return "0x" + (self.selector + encoded).hex()

    def decode_output(self, data: Union[bytes, str]) -> Any:
        """
        Decode return data.

        Returns:
            None for no outputs, the value itself for a single output,
            a dict when every output is named, otherwise a list
        """
        if isinstance(data, str):
            data = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        if not self.outputs:
            return None
        try:
            values = abi_decode(self.output_types, bytes(data))
        except Exception as e:
            raise AbiError(f"Failed to decode output of {self.signature}: {e}") from e
        if len(values) == 1:
            return values[0]
        if all(p.name for p in self.outputs):
            return {p.name: value for p, value in zip(self.outputs, values)}
        return list(values)


def coerce_value(abi_type: str, value: Any) -> Any:
    """
    Coerce a JSON-ish value (as produced by a data-fetch snippet) into the
    Python type eth-abi expects for abi_type.
    """
    match = _ARRAY_SUFFIX_RE.match(abi_type)
    if match:
        if not isinstance(value, (list, tuple)):
            raise AbiError(f"Expected a list for {abi_type}, got {type(value).__name__}")
        return [coerce_value(match.group(1), item) for item in value]

    if abi_type.startswith("uint") or abi_type.startswith("int"):
        if isinstance(value, bool):
            raise AbiError(f"Expected an integer for {abi_type}, got a bool")
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            if not value.is_integer():
                raise AbiError(f"Value {value} is not an integer and can't be encoded as {abi_type}")
            return int(value)
        if isinstance(value, str):
            try:
                return int(value, 0)
            except ValueError as e:
                raise AbiError(f"Value {value!r} can't be encoded as {abi_type}") from e
        raise AbiError(f"Expected an integer for {abi_type}, got {type(value).__name__}")

    if abi_type == "bool":
        if not isinstance(value, bool):
            raise AbiError(f"Expected a bool, got {type(value).__name__}")
        return value

    if abi_type == "address":
        if not isinstance(value, str) or not Web3.is_address(value):
            raise AbiError(f"Invalid address: {value!r}")
        return Web3.to_checksum_address(value)

    if abi_type.startswith("bytes"):
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, str):
            hex_value = value[2:] if value.startswith("0x") else value
            try:
                return bytes.fromhex(hex_value)
            except ValueError as e:
                raise AbiError(f"Invalid hex for {abi_type}: {value!r}") from e
        raise AbiError(f"Expected bytes or hex for {abi_type}, got {type(value).__name__}")

    if abi_type == "string":
        return str(value)

    if abi_type.startswith("("):
        return tuple(value)

    return value
