#!/usr/bin/env python3
"""
Hierarchical parameters handler
Groups of key/value options loaded from YAML
"""

import copy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


class ParametersHandler:
    """
    Read-only view over a nested configuration document

    Leaves are parameters; nested mappings are groups. Missing keys are
    reported with ``None`` so callers can log and fail the way the
    estimators expect, instead of raising.

    Example:
        handler = ParametersHandler.from_yaml('config/ik_config.yaml')
        tasks = handler.get_parameter('tasks')
        ik_group = handler.get_group('IK')
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(data) if data else {}
        self.source: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParametersHandler':
        """Create a handler from a (deep-copied) dictionary"""
        return cls(copy.deepcopy(data))

    @classmethod
    def from_yaml(cls, filepath: str) -> 'ParametersHandler':
        """Load configuration from YAML file"""
        with open(filepath, 'r') as f:
            cfg = yaml.safe_load(f)

        if cfg is None:
            cfg = {}
        if not isinstance(cfg, dict):
            raise ValueError(f"Configuration root of {filepath} must be a mapping")

        handler = cls(cfg)
        handler.source = Path(filepath)
        return handler

    def has(self, name: str) -> bool:
        return name in self._data

    def get_parameter(self, name: str, default: Any = None) -> Any:
        """
        Get a leaf parameter

        Returns:
            The stored value, or ``default`` when the key is missing or
            names a group
        """
        value = self._data.get(name, default)
        if isinstance(value, dict):
            return default
        return value

    def get_group(self, name: str) -> Optional['ParametersHandler']:
        """Get a nested group, or None if it does not exist"""
        value = self._data.get(name)
        if not isinstance(value, dict):
            return None
        return ParametersHandler(value)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def __repr__(self):
        return f"ParametersHandler(keys={self.keys()})"
