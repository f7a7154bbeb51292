#!/usr/bin/env python3
"""
Run configuration and parameter validation.

All checks run locally against the analysis definition before anything is
sent to the backend. Issues are collected rather than raised one at a time
so a caller sees every offending step and field at once.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ValidationError, ValidationIssue, NotFoundError
from .models.definition import AlgorithmDefinition, AnalysisDefinition, ParameterSchema
from .models.run import AnalysisRunRequest

logger = logging.getLogger(__name__)

_TYPE_ALIASES = {
    'int': 'integer',
    'integer': 'integer',
    'float': 'number',
    'number': 'number',
    'double': 'number',
    'str': 'string',
    'string': 'string',
    'bool': 'boolean',
    'boolean': 'boolean',
    'array': 'array',
    'list': 'array',
    'object': 'object',
    'dict': 'object',
    'any': 'any',
}


def _type_matches(expected: str, value: Any) -> bool:
    kind = _TYPE_ALIASES.get(expected, 'any')
    if kind == 'integer':
        return isinstance(value, int) and not isinstance(value, bool)
    if kind == 'number':
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind == 'string':
        return isinstance(value, str)
    if kind == 'boolean':
        return isinstance(value, bool)
    if kind == 'array':
        return isinstance(value, (list, tuple))
    if kind == 'object':
        return isinstance(value, dict)
    return True


def _constraint(constraints: Dict[str, Any], *names: str) -> Any:
    for name in names:
        if constraints.get(name) is not None:
            return constraints[name]
    return None


def check_parameter(schema: ParameterSchema, value: Any, step_code: Optional[str] = None) -> List[ValidationIssue]:
    """
    Check one parameter value against its schema.

    Args:
        schema: Declared parameter schema
        value: Supplied value
        step_code: Step the parameter belongs to, for issue reporting

    Returns:
        Issues found (empty when the value is acceptable)
    """
    field_name = f"parameters.{schema.name}"

    def issue(message: str) -> List[ValidationIssue]:
        return [ValidationIssue(step_code=step_code, field=field_name, message=message)]

    if value is None:
        if schema.required and not schema.has_default:
            return issue("is required")
        return []

    if not _type_matches(schema.type, value):
        return issue(f"expected {_TYPE_ALIASES.get(schema.type, schema.type)}, got {type(value).__name__}")

    constraints = schema.constraints
    allowed = _constraint(constraints, 'allowed_values', 'enum')
    if allowed is not None and value not in allowed:
        return issue(f"must be one of {list(allowed)}")

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        minimum = _constraint(constraints, 'min', 'minimum')
        maximum = _constraint(constraints, 'max', 'maximum')
        if minimum is not None and value < minimum:
            return issue(f"must be >= {minimum}")
        if maximum is not None and value > maximum:
            return issue(f"must be <= {maximum}")

    if isinstance(value, (str, list, tuple)):
        min_length = constraints.get('min_length')
        max_length = constraints.get('max_length')
        if min_length is not None and len(value) < min_length:
            return issue(f"length must be >= {min_length}")
        if max_length is not None and len(value) > max_length:
            return issue(f"length must be <= {max_length}")

    pattern = constraints.get('pattern')
    if pattern and isinstance(value, str) and not re.fullmatch(pattern, value):
        return issue(f"must match pattern {pattern}")

    return []


def check_parameters(algorithm: AlgorithmDefinition,
                     parameters: Optional[Dict[str, Any]],
                     step_code: Optional[str] = None) -> List[ValidationIssue]:
    """Check a full parameter map, including unknown and missing required names."""
    parameters = parameters or {}
    issues: List[ValidationIssue] = []

    for name in parameters:
        if algorithm.get_parameter(name) is None:
            issues.append(ValidationIssue(
                step_code=step_code,
                field=f"parameters.{name}",
                message=f"unknown parameter for algorithm {algorithm.code}"
            ))

    for schema in algorithm.parameters:
        issues.extend(check_parameter(schema, parameters.get(schema.name), step_code))

    return issues


def resolve_parameters(algorithm: AlgorithmDefinition, parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Supplied parameters laid over the algorithm's declared defaults."""
    resolved = algorithm.default_parameters()
    resolved.update(parameters or {})
    return resolved


def resolve_algorithm(definition: AnalysisDefinition,
                      step_code: str,
                      algorithm_code: Optional[str],
                      algorithm_version: Optional[str] = None) -> Tuple[Optional[AlgorithmDefinition], List[ValidationIssue]]:
    """
    Find the algorithm a step configuration points at.

    Returns:
        (algorithm or None, issues)
    """
    step = definition.get_step(step_code)
    if step is None:
        return None, [ValidationIssue(step_code, 'step', f"not a step of {definition.key}")]

    if not algorithm_code:
        return None, [ValidationIssue(step_code, 'algorithm', "an enabled step must select an algorithm")]

    algorithm = step.get_algorithm(algorithm_code, algorithm_version)
    if algorithm is None:
        available = ', '.join(step.algorithm_codes) or 'none'
        label = f"{algorithm_code}@{algorithm_version}" if algorithm_version else algorithm_code
        return None, [ValidationIssue(
            step_code, 'algorithm', f"{label} is not available for this step (available: {available})"
        )]

    if not algorithm.is_active:
        return None, [ValidationIssue(step_code, 'algorithm', f"{algorithm.code} is not active")]

    return algorithm, []


def validate_run_request(definition: AnalysisDefinition, request: AnalysisRunRequest) -> None:
    """
    Validate a run request against its definition.

    Raises:
        ValidationError: Enumerating every offending step and field
    """
    issues: List[ValidationIssue] = []

    if not definition.is_active:
        issues.append(ValidationIssue(None, 'analysis_code', f"{definition.key} is not active"))

    if request.document_type and not definition.supports_document_type(request.document_type):
        issues.append(ValidationIssue(
            None, 'document_type', f"{request.document_type} is not supported by {definition.code}"
        ))

    enabled = request.config.enabled_step_codes()
    if not enabled:
        issues.append(ValidationIssue(None, 'config.steps', "at least one step must be enabled"))

    for step_code, step_config in request.config.steps.items():
        if definition.get_step(step_code) is None:
            issues.append(ValidationIssue(step_code, 'step', f"not a step of {definition.key}"))
            continue
        if not step_config.enabled:
            continue

        step = definition.get_step(step_code)
        if not step.is_active:
            issues.append(ValidationIssue(step_code, 'enabled', "step is not active"))
            continue

        selection = step_config.algorithm
        algorithm, found = resolve_algorithm(
            definition,
            step_code,
            selection.code if selection else None,
            selection.version if selection else None,
        )
        issues.extend(found)
        if algorithm is not None:
            issues.extend(check_parameters(algorithm, selection.parameters, step_code))

        for numeric_field in ('timeout', 'retry'):
            value = getattr(step_config, numeric_field)
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
                issues.append(ValidationIssue(step_code, numeric_field, "must be a non-negative integer"))

    if issues:
        logger.debug(f"Run request for {definition.key} rejected with {len(issues)} issue(s)")
        raise ValidationError(issues)


def validate_step_execution(definition: AnalysisDefinition,
                            step_code: str,
                            algorithm_code: str,
                            parameters: Optional[Dict[str, Any]] = None,
                            algorithm_version: Optional[str] = None) -> Tuple[AlgorithmDefinition, Dict[str, Any]]:
    """
    Validate a single step re-execution request.

    Returns:
        (algorithm, parameters resolved against defaults)

    Raises:
        NotFoundError: If the step is not part of the definition
        ValidationError: If the algorithm or parameters are invalid
    """
    if definition.get_step(step_code) is None:
        raise NotFoundError('step', f"{definition.key}/{step_code}")

    algorithm, issues = resolve_algorithm(definition, step_code, algorithm_code, algorithm_version)
    if algorithm is not None:
        issues.extend(check_parameters(algorithm, parameters, step_code))
    if issues:
        raise ValidationError(issues)

    return algorithm, resolve_parameters(algorithm, parameters)
