# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Lifecycle FSM — Config-driven status transitions per entity kind.

Transition rules are loaded from a dict or YAML file:
    states: [DRAFT, PUBLISHED, ARCHIVED]
    transitions:
      - from: DRAFT
        event: PUBLISH
        to: PUBLISHED

The bundled flows (template, consent, handle) live in `lifecycle/flows/`.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from consent_vault.core.errors import ConsentError, ErrorKind

logger = logging.getLogger("vault.lifecycle")

FLOWS_DIR = Path(__file__).parent / "flows"

State = Union[str, Enum]


def _value(v: State) -> str:
    return v.value if isinstance(v, Enum) else str(v)


class LifecycleFSM:
    """Pure transition table; it never touches storage."""

    def __init__(self, config: Dict[str, Any]) -> None:
        self.name: str = config.get("name", "lifecycle")
        self._states: List[str] = config.get("states", [])
        self._initial_state: str = config.get("initial_state", self._states[0] if self._states else "")
        self._terminal: frozenset = frozenset(config.get("terminal_states", []))

        self._lookup: Dict[tuple, str] = {}
        for t in config.get("transitions", []):
            for state in (t["from"], t["to"]):
                if state not in self._states:
                    raise ValueError(f"{self.name}: unknown state '{state}' in transition")
            self._lookup[(t["from"], t["event"])] = t["to"]

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "LifecycleFSM":
        with open(path, "r", encoding="utf-8") as f:
            return cls(yaml.safe_load(f))

    @property
    def states(self) -> List[str]:
        return list(self._states)

    @property
    def initial_state(self) -> str:
        return self._initial_state

    def is_terminal(self, state: State) -> bool:
        return _value(state) in self._terminal

    def can(self, current_state: State, event: str) -> bool:
        return (_value(current_state), event) in self._lookup

    def transition(self, current_state: State, event: str) -> str:
        """
        Compute the next state for `event`.

        Raises ConsentError(INVALID_TRANSITION) if no rule matches.
        """
        current = _value(current_state)
        key = (current, event)
        if key not in self._lookup:
            raise ConsentError(
                ErrorKind.INVALID_TRANSITION,
                f"{self.name}: no transition from '{current}' on '{event}'",
                details={"flow": self.name, "from": current, "event": event},
            )
        next_state = self._lookup[key]
        logger.debug("%s transition: %s -[%s]-> %s", self.name, current, event, next_state)
        return next_state

    def get_valid_events(self, current_state: State) -> List[str]:
        current = _value(current_state)
        return [event for (state, event) in self._lookup if state == current]


def load_flow(name: str) -> LifecycleFSM:
    """Load one of the bundled flows by name."""
    return LifecycleFSM.from_yaml(FLOWS_DIR / f"{name}.yaml")


template_flow = load_flow("template")
consent_flow = load_flow("consent")
handle_flow = load_flow("handle")
