"""Element tree normalization and command registry extraction.

A raw configuration describes a tree of interactive elements (buttons,
toggles, steppers, inputs, outputs) and groups that nest them. Normalization
applies inherited defaults, fills per-type fields, assigns command ids and
flattens every embedded command into one registry keyed by command id.

Normalizing an already normalized tree (its ``to_payload()`` form) yields the
same tree again.
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Sequence

from localui_args import sanitize_id
from localui_errors import (
    DUPLICATE_ID,
    INVALID_COMMAND,
    INVALID_ELEMENT,
    INVALID_FIELD,
    INVALID_GROUP,
    MISSING_FIELD,
    UNSUPPORTED_TYPE,
    Failure,
)


GROUP_TYPE = "group"
SUPPORTED_TYPES = ("button", "toggle", "stepper", "input", "output")
PRESENTATIONS = ("inline", "tooltip", "notification", "popover", "modal")
GROUP_LAYOUTS = ("grid", "stack")
OUTPUT_MODES = ("poll", "manual")

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_INTERVAL_MS = 5000
DEFAULT_GROUP_COLUMNS = 12
DEFAULT_OUTPUT_HEIGHT = 4

# Keys a defaults map may never inject into a node.
_STRUCTURAL_KEYS = frozenset({"id", "type", "elements", "defaults"})


@dataclass(frozen=True)
class CommandDefinition:
    id: str
    template: str

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "template": self.template}


@dataclass(frozen=True)
class CommandWrapper:
    server: CommandDefinition
    client_script: str | None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"server": self.server.to_payload()}
        if self.client_script is not None:
            payload["client"] = {"script": self.client_script}
        return payload


def _wrapper_payload(wrapper: CommandWrapper | None) -> dict[str, Any] | None:
    return wrapper.to_payload() if wrapper is not None else None


@dataclass(frozen=True)
class Element:
    id: str
    type: str
    label: str
    classes: str
    x: int | None
    y: int | None
    w: int | None
    h: int | None
    extra: dict[str, Any]

    def command_wrappers(self) -> list[CommandWrapper]:
        return []

    def _variant_payload(self) -> dict[str, Any]:
        return {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "classes": self.classes,
            "x": self.x,
            "y": self.y,
            "w": self.w,
            "h": self.h,
        }
        payload.update(self._variant_payload())
        for key, value in self.extra.items():
            payload.setdefault(key, copy.deepcopy(value))
        return payload


@dataclass(frozen=True)
class LeafElement(Element):
    presentation: str
    timeout_ms: int

    def _leaf_payload(self) -> dict[str, Any]:
        return {"presentation": self.presentation, "timeoutMs": self.timeout_ms}


@dataclass(frozen=True)
class ButtonElement(LeafElement):
    command: CommandWrapper | None

    def command_wrappers(self) -> list[CommandWrapper]:
        return [self.command] if self.command else []

    def _variant_payload(self) -> dict[str, Any]:
        payload = self._leaf_payload()
        payload["command"] = _wrapper_payload(self.command)
        return payload


@dataclass(frozen=True)
class ToggleElement(LeafElement):
    initial: bool
    on_command: CommandWrapper | None
    off_command: CommandWrapper | None

    def command_wrappers(self) -> list[CommandWrapper]:
        return [item for item in (self.on_command, self.off_command) if item]

    def _variant_payload(self) -> dict[str, Any]:
        payload = self._leaf_payload()
        payload["initial"] = self.initial
        payload["onCommand"] = _wrapper_payload(self.on_command)
        payload["offCommand"] = _wrapper_payload(self.off_command)
        return payload


@dataclass(frozen=True)
class StepperElement(LeafElement):
    min: int
    max: int
    step: int
    value: int
    command: CommandWrapper | None

    def command_wrappers(self) -> list[CommandWrapper]:
        return [self.command] if self.command else []

    def _variant_payload(self) -> dict[str, Any]:
        payload = self._leaf_payload()
        payload.update({"min": self.min, "max": self.max, "step": self.step, "value": self.value})
        payload["command"] = _wrapper_payload(self.command)
        return payload


@dataclass(frozen=True)
class ApplyAction:
    label: str
    command: CommandWrapper | None
    extra: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"label": self.label, "command": _wrapper_payload(self.command)}
        for key, value in self.extra.items():
            payload.setdefault(key, copy.deepcopy(value))
        return payload


@dataclass(frozen=True)
class InputElement(LeafElement):
    input_type: str
    apply: ApplyAction | None

    def command_wrappers(self) -> list[CommandWrapper]:
        if self.apply is None or self.apply.command is None:
            return []
        return [self.apply.command]

    def _variant_payload(self) -> dict[str, Any]:
        payload = self._leaf_payload()
        payload["inputType"] = self.input_type
        if self.apply is not None:
            payload["apply"] = self.apply.to_payload()
        return payload


@dataclass(frozen=True)
class OutputElement(LeafElement):
    mode: str
    interval_ms: int
    command: CommandWrapper | None
    on_demand_button_label: str

    def command_wrappers(self) -> list[CommandWrapper]:
        return [self.command] if self.command else []

    def _variant_payload(self) -> dict[str, Any]:
        payload = self._leaf_payload()
        payload.update(
            {
                "mode": self.mode,
                "intervalMs": self.interval_ms,
                "command": _wrapper_payload(self.command),
                "onDemandButtonLabel": self.on_demand_button_label,
            }
        )
        return payload


@dataclass(frozen=True)
class GroupElement(Element):
    layout: str
    columns: int
    gap: int | None
    border: str | bool | None
    background: str | None
    defaults: dict[str, Any]
    elements: tuple[Element, ...]

    def _variant_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"layout": self.layout, "columns": self.columns, "gap": self.gap}
        if self.border is not None:
            payload["border"] = self.border
        if self.background is not None:
            payload["background"] = self.background
        if self.defaults:
            payload["defaults"] = copy.deepcopy(self.defaults)
        payload["elements"] = [child.to_payload() for child in self.elements]
        return payload


@dataclass(frozen=True)
class NormalizedTree:
    elements: tuple[Element, ...]
    commands: dict[str, CommandDefinition]

    def to_payload(self) -> list[dict[str, Any]]:
        return [element.to_payload() for element in self.elements]


def iter_elements(elements: Sequence[Element]) -> Iterator[Element]:
    # Pre-order, document order.
    stack = list(reversed(elements))
    while stack:
        element = stack.pop()
        yield element
        if isinstance(element, GroupElement):
            stack.extend(reversed(element.elements))


def _as_int(value: Any, fallback: int) -> int:
    if value is None or isinstance(value, (dict, list)):
        return fallback
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else fallback
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        parsed = float(text)
    except ValueError:
        return fallback
    return int(parsed) if math.isfinite(parsed) else fallback


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "y", "on"}
    return bool(value)


def _is_auto(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in {"", "auto"})


def _coordinate(value: Any) -> int | None:
    if _is_auto(value):
        return None
    return max(0, _as_int(value, 0))


def _dimension(value: Any) -> int | None:
    if _is_auto(value):
        return None
    return max(1, _as_int(value, 1))


def _merge_classes(existing: Any, inherited: Any) -> str:
    tokens = str(existing or "").split()
    for token in str(inherited or "").split():
        if token not in tokens:
            tokens.append(token)
    return " ".join(tokens)


def _apply_defaults(definition: Mapping[str, Any], defaults: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(definition)
    for key, value in defaults.items():
        if key in _STRUCTURAL_KEYS or key == "classes":
            continue
        if key not in merged:
            merged[key] = copy.deepcopy(value)
    merged["classes"] = _merge_classes(merged.get("classes"), defaults.get("classes"))
    return merged


def normalize_command(
    wrapper: Any,
    element_id: str,
    suffix: str,
) -> tuple[CommandWrapper | None, Failure | None]:
    if not wrapper:
        return None, None
    if not isinstance(wrapper, dict):
        return None, Failure(INVALID_COMMAND, f"Command for element {element_id} must be an object.", subject=element_id)

    server = wrapper.get("server", wrapper)
    if not isinstance(server, dict):
        return None, Failure(INVALID_COMMAND, f"Server command for element {element_id} must be an object.", subject=element_id)
    template = str(server.get("template") or "").strip()
    if not template:
        return None, Failure(
            INVALID_COMMAND,
            f"Server command template missing for element {element_id}",
            subject=element_id,
        )
    raw_id = str(server.get("id") or "").strip()
    command_id = sanitize_id(raw_id or f"{element_id}_{suffix}")

    client_script: str | None = None
    if "client" in wrapper:
        client = wrapper.get("client")
        script = str(client.get("script") or "") if isinstance(client, dict) else ""
        if not script:
            return None, Failure(
                INVALID_COMMAND,
                f"Client script cannot be empty for element {element_id}",
                subject=element_id,
            )
        client_script = script

    return CommandWrapper(server=CommandDefinition(id=command_id, template=template), client_script=client_script), None


def _base_fields(data: dict[str, Any], element_id: str, element_type: str) -> dict[str, Any]:
    label = data.pop("label", None)
    return {
        "id": element_id,
        "type": element_type,
        "label": element_id if label is None else str(label),
        "classes": str(data.pop("classes", "") or ""),
        "x": _coordinate(data.pop("x", None)),
        "y": _coordinate(data.pop("y", None)),
        "w": _dimension(data.pop("w", 1)),
        "h": _dimension(data.pop("h", 1)),
    }


def _leaf_fields(data: dict[str, Any], element_id: str, element_type: str) -> dict[str, Any]:
    fields = _base_fields(data, element_id, element_type)
    presentation = data.pop("presentation", None)
    timeout_ms = data.pop("timeoutMs", None)
    fields["presentation"] = presentation if presentation in PRESENTATIONS else "inline"
    fields["timeout_ms"] = DEFAULT_TIMEOUT_MS if timeout_ms is None else max(0, _as_int(timeout_ms, DEFAULT_TIMEOUT_MS))
    return fields


def _decode_button(data: dict[str, Any], element_id: str) -> tuple[Element | None, Failure | None]:
    fields = _leaf_fields(data, element_id, "button")
    command, failure = normalize_command(data.pop("command", None), element_id, "button")
    if failure is not None:
        return None, failure
    return ButtonElement(command=command, extra=data, **fields), None


def _decode_toggle(data: dict[str, Any], element_id: str) -> tuple[Element | None, Failure | None]:
    fields = _leaf_fields(data, element_id, "toggle")
    on_command, failure = normalize_command(data.pop("onCommand", None), element_id, "on")
    if failure is not None:
        return None, failure
    off_command, failure = normalize_command(data.pop("offCommand", None), element_id, "off")
    if failure is not None:
        return None, failure
    initial = _as_bool(data.pop("initial", False))
    return ToggleElement(initial=initial, on_command=on_command, off_command=off_command, extra=data, **fields), None


def _decode_stepper(data: dict[str, Any], element_id: str) -> tuple[Element | None, Failure | None]:
    fields = _leaf_fields(data, element_id, "stepper")
    low = _as_int(data.pop("min", None), 0)
    high = max(low, _as_int(data.pop("max", None), 100))
    step = max(1, _as_int(data.pop("step", None), 1))
    value = min(max(_as_int(data.pop("value", None), low), low), high)
    command, failure = normalize_command(data.pop("command", None), element_id, "step")
    if failure is not None:
        return None, failure
    return StepperElement(min=low, max=high, step=step, value=value, command=command, extra=data, **fields), None


def _decode_input(data: dict[str, Any], element_id: str) -> tuple[Element | None, Failure | None]:
    fields = _leaf_fields(data, element_id, "input")
    input_type = data.pop("inputType", None)
    apply_raw = data.pop("apply", None)
    apply: ApplyAction | None = None
    if apply_raw is not None:
        if not isinstance(apply_raw, dict):
            return None, Failure(INVALID_FIELD, f"Input {element_id} apply must be an object.", subject=element_id)
        apply_data = dict(apply_raw)
        label = apply_data.pop("label", None)
        command, failure = normalize_command(apply_data.pop("command", None), element_id, "input")
        if failure is not None:
            return None, failure
        apply = ApplyAction(label="Apply" if label is None else str(label), command=command, extra=apply_data)
    return InputElement(
        input_type="string" if input_type is None else str(input_type),
        apply=apply,
        extra=data,
        **fields,
    ), None


def _decode_output(data: dict[str, Any], element_id: str) -> tuple[Element | None, Failure | None]:
    if "h" not in data:
        data["h"] = DEFAULT_OUTPUT_HEIGHT
    fields = _leaf_fields(data, element_id, "output")
    mode = data.pop("mode", None)
    interval_ms = data.pop("intervalMs", None)
    button_label = data.pop("onDemandButtonLabel", None)
    command, failure = normalize_command(data.pop("command", None), element_id, "output")
    if failure is not None:
        return None, failure
    return OutputElement(
        mode=mode if mode in OUTPUT_MODES else "manual",
        interval_ms=max(0, _as_int(interval_ms, DEFAULT_INTERVAL_MS)),
        command=command,
        on_demand_button_label="Refresh" if button_label is None else str(button_label),
        extra=data,
        **fields,
    ), None


_LEAF_DECODERS: dict[str, Callable[[dict[str, Any], str], tuple[Element | None, Failure | None]]] = {
    "button": _decode_button,
    "toggle": _decode_toggle,
    "stepper": _decode_stepper,
    "input": _decode_input,
    "output": _decode_output,
}


def _normalize_group(
    data: dict[str, Any],
    element_id: str,
    defaults: Mapping[str, Any],
    seen: set[str],
    commands: dict[str, CommandDefinition],
) -> tuple[Element | None, Failure | None]:
    children_raw = data.pop("elements", [])
    if not isinstance(children_raw, list):
        return None, Failure(INVALID_GROUP, f"Group elements must be an array for group {element_id}", subject=element_id)

    overrides = data.pop("defaults", None)
    group_defaults = dict(overrides) if isinstance(overrides, dict) else {}
    child_defaults = dict(defaults)
    child_defaults.update(group_defaults)

    fields = _base_fields(data, element_id, GROUP_TYPE)
    layout = data.pop("layout", None)
    columns = data.pop("columns", None)
    gap = data.pop("gap", None)

    border: str | bool | None = None
    if "border" in data:
        raw_border = data.pop("border")
        if isinstance(raw_border, str):
            border = raw_border.strip() or False
        else:
            border = bool(raw_border)
    background = str(data.pop("background")) if "background" in data else None

    children: list[Element] = []
    for child in children_raw:
        element, failure = _normalize_definition(child, child_defaults, seen, commands)
        if failure is not None:
            return None, failure
        children.append(element)

    return GroupElement(
        layout=layout if layout in GROUP_LAYOUTS else "grid",
        columns=DEFAULT_GROUP_COLUMNS if columns is None else max(1, _as_int(columns, DEFAULT_GROUP_COLUMNS)),
        gap=None if gap is None else max(0, _as_int(gap, 0)),
        border=border,
        background=background,
        defaults=group_defaults,
        elements=tuple(children),
        extra=data,
        **fields,
    ), None


def _normalize_definition(
    definition: Any,
    defaults: Mapping[str, Any],
    seen: set[str],
    commands: dict[str, CommandDefinition],
) -> tuple[Element | None, Failure | None]:
    if not isinstance(definition, dict):
        return None, Failure(INVALID_ELEMENT, "Element definition must be an object.")

    raw_id = str(definition.get("id") or "").strip()
    element_type = str(definition.get("type") or "").strip()
    if not raw_id or not element_type:
        return None, Failure(MISSING_FIELD, "Each element requires an id and type.", subject=raw_id)

    element_id = sanitize_id(raw_id)
    if element_id in seen:
        return None, Failure(DUPLICATE_ID, f"Duplicate element id: {element_id}", subject=element_id)
    seen.add(element_id)

    data = _apply_defaults(definition, defaults)
    data.pop("id", None)
    data.pop("type", None)

    if element_type == GROUP_TYPE:
        return _normalize_group(data, element_id, defaults, seen, commands)

    decoder = _LEAF_DECODERS.get(element_type)
    if decoder is None:
        return None, Failure(UNSUPPORTED_TYPE, f"Unsupported element type: {element_type}", subject=element_id)

    element, failure = decoder(data, element_id)
    if failure is not None:
        return None, failure
    for wrapper in element.command_wrappers():
        commands[wrapper.server.id] = wrapper.server
    return element, None


def normalize_elements(
    raw_elements: Any,
    globals_: Mapping[str, Any] | None = None,
) -> tuple[NormalizedTree | None, Failure | None]:
    if raw_elements is None:
        raw_elements = []
    if not isinstance(raw_elements, list):
        return None, Failure(INVALID_ELEMENT, "elements must be an array.")

    globals_obj = globals_ if isinstance(globals_, Mapping) else {}
    defaults_raw = globals_obj.get("defaults")
    defaults = dict(defaults_raw) if isinstance(defaults_raw, Mapping) else {}

    seen: set[str] = set()
    commands: dict[str, CommandDefinition] = {}
    normalized: list[Element] = []
    for definition in raw_elements:
        element, failure = _normalize_definition(definition, defaults, seen, commands)
        if failure is not None:
            return None, failure
        normalized.append(element)
    return NormalizedTree(elements=tuple(normalized), commands=commands), None
