#!/usr/bin/env python3
"""
Analysis definition data models.

Immutable templates describing an analysis type's ordered steps, the
algorithms available to each step and their parameter schemas.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


def _freeze_mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


@dataclass(frozen=True)
class ParameterSchema:
    """Schema for a single algorithm parameter."""
    name: str
    type: str = 'any'
    description: str = ''
    required: bool = False
    default: Any = None
    constraints: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParameterSchema':
        constraints = _freeze_mapping(data.get('constraints'))
        # Flat min_value / max_value / allowed_values fields fold into constraints
        for flat_key, key in (('min_value', 'min'), ('max_value', 'max'), ('allowed_values', 'allowed_values')):
            if data.get(flat_key) is not None:
                constraints.setdefault(key, data[flat_key])
        return cls(
            name=data['name'],
            type=(data.get('type') or 'any').lower(),
            description=data.get('description') or '',
            required=bool(data.get('required', False)),
            default=data.get('default'),
            constraints=constraints,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.type,
            'description': self.description,
            'required': self.required,
            'default': self.default,
            'constraints': dict(self.constraints),
        }


@dataclass(frozen=True)
class AlgorithmDefinition:
    """An interchangeable, versioned implementation of a step."""
    code: str
    version: str
    name: str = ''
    description: str = ''
    is_active: bool = True
    supported_document_types: Tuple[str, ...] = ()
    parameters: Tuple[ParameterSchema, ...] = ()

    def get_parameter(self, name: str) -> Optional[ParameterSchema]:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        return None

    def default_parameters(self) -> Dict[str, Any]:
        """Defaults for every parameter that declares one."""
        return {p.name: p.default for p in self.parameters if p.has_default}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlgorithmDefinition':
        return cls(
            code=data['code'],
            version=str(data.get('version') or '1.0.0'),
            name=data.get('name') or data['code'],
            description=data.get('description') or '',
            is_active=bool(data.get('is_active', True)),
            supported_document_types=tuple(data.get('supported_document_types') or ()),
            parameters=tuple(ParameterSchema.from_dict(p) for p in data.get('parameters') or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'version': self.version,
            'name': self.name,
            'description': self.description,
            'is_active': self.is_active,
            'supported_document_types': list(self.supported_document_types),
            'parameters': [p.to_dict() for p in self.parameters],
        }


@dataclass(frozen=True)
class StepDefinition:
    """One stage of an analysis pipeline."""
    code: str
    name: str
    order: int
    description: str = ''
    is_active: bool = True
    algorithms: Tuple[AlgorithmDefinition, ...] = ()

    def get_algorithm(self, code: str, version: Optional[str] = None) -> Optional[AlgorithmDefinition]:
        """
        Find an algorithm of this step.

        Without a version the last declared version of the code wins.
        """
        matches = [a for a in self.algorithms if a.code == code]
        if version is not None:
            matches = [a for a in matches if a.version == version]
        return matches[-1] if matches else None

    @property
    def algorithm_codes(self) -> List[str]:
        codes = []
        for algorithm in self.algorithms:
            if algorithm.code not in codes:
                codes.append(algorithm.code)
        return codes

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StepDefinition':
        return cls(
            code=data['code'],
            name=data.get('name') or data['code'],
            order=int(data.get('order', 0)),
            description=data.get('description') or '',
            is_active=bool(data.get('is_active', True)),
            algorithms=tuple(AlgorithmDefinition.from_dict(a) for a in data.get('algorithms') or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'name': self.name,
            'order': self.order,
            'description': self.description,
            'is_active': self.is_active,
            'algorithms': [a.to_dict() for a in self.algorithms],
        }


@dataclass(frozen=True)
class AnalysisDefinition:
    """
    Immutable template for an analysis type.

    Keyed by code + version; steps are kept sorted by their order index.
    """
    code: str
    version: str
    name: str
    description: str = ''
    is_active: bool = True
    supported_document_types: Tuple[str, ...] = ()
    steps: Tuple[StepDefinition, ...] = ()

    def __post_init__(self):
        ordered = tuple(sorted(self.steps, key=lambda s: s.order))
        object.__setattr__(self, 'steps', ordered)

    @property
    def key(self) -> str:
        return f"{self.code}@{self.version}"

    @property
    def step_codes(self) -> List[str]:
        return [step.code for step in self.steps]

    def get_step(self, code: str) -> Optional[StepDefinition]:
        for step in self.steps:
            if step.code == code:
                return step
        return None

    def step_names(self) -> Dict[str, str]:
        return {step.code: step.name for step in self.steps}

    def supports_document_type(self, document_type: str) -> bool:
        if not self.supported_document_types:
            return True
        return document_type.lower() in {t.lower() for t in self.supported_document_types}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisDefinition':
        return cls(
            code=data['code'],
            version=str(data.get('version') or '1.0.0'),
            name=data.get('name') or data['code'],
            description=data.get('description') or '',
            is_active=bool(data.get('is_active', True)),
            supported_document_types=tuple(data.get('supported_document_types') or ()),
            steps=tuple(StepDefinition.from_dict(s) for s in data.get('steps') or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'version': self.version,
            'name': self.name,
            'description': self.description,
            'is_active': self.is_active,
            'supported_document_types': list(self.supported_document_types),
            'steps': [s.to_dict() for s in self.steps],
        }
