import pytest

from backend.catalog import builtin_definitions
from orchestrator.exceptions import NotFoundError, ValidationError
from orchestrator.models.definition import ParameterSchema
from orchestrator.models.run import AlgorithmSelection, StepConfig
from orchestrator.validation import (
    check_parameter, resolve_parameters, validate_run_request, validate_step_execution
)


@pytest.fixture
def table_definition():
    return builtin_definitions()[0]


def test_valid_request_passes(table_definition, table_request_factory):
    validate_run_request(table_definition, table_request_factory())


def test_unknown_algorithm_names_the_step(table_definition, table_request_factory):
    request = table_request_factory()
    request.config.steps['table_structure'].algorithm = AlgorithmSelection(code='nonexistent')

    with pytest.raises(ValidationError) as exc_info:
        validate_run_request(table_definition, request)

    assert exc_info.value.step_codes == ['table_structure']
    assert exc_info.value.issues[0].field == 'algorithm'


def test_every_offending_step_is_reported(table_definition, table_request_factory):
    request = table_request_factory(parameters={
        'table_detection': {'confidence_threshold': 1.5},
        'table_data': {'locale': 'english'},
    })
    request.config.steps['bogus_step'] = StepConfig(algorithm=AlgorithmSelection(code='x'))

    with pytest.raises(ValidationError) as exc_info:
        validate_run_request(table_definition, request)

    assert set(exc_info.value.step_codes) == {'table_detection', 'table_data', 'bogus_step'}


def test_no_enabled_steps_is_rejected(table_definition, table_request_factory):
    request = table_request_factory(disabled=('table_detection', 'table_structure', 'table_data'))

    with pytest.raises(ValidationError) as exc_info:
        validate_run_request(table_definition, request)

    assert exc_info.value.issues[0].field == 'config.steps'


def test_disabled_steps_are_not_validated(table_definition, table_request_factory):
    request = table_request_factory(disabled=('table_structure',))
    request.config.steps['table_structure'].algorithm = AlgorithmSelection(code='nonexistent')
    validate_run_request(table_definition, request)


def test_unsupported_document_type(table_definition, table_request_factory):
    request = table_request_factory()
    request.document_type = 'docx'
    with pytest.raises(ValidationError, match='document_type'):
        validate_run_request(table_definition, request)


def test_negative_timeout_rejected(table_definition, table_request_factory):
    request = table_request_factory()
    request.config.steps['table_detection'].timeout = -1
    with pytest.raises(ValidationError) as exc_info:
        validate_run_request(table_definition, request)
    assert exc_info.value.issues[0].field == 'timeout'


@pytest.mark.parametrize("schema,value,expected_issue", [
    (ParameterSchema('n', 'integer'), True, 'expected integer'),
    (ParameterSchema('n', 'integer', constraints={'min': 1}), 0, '>= 1'),
    (ParameterSchema('n', 'float', constraints={'max': 1.0}), 1.5, '<= 1.0'),
    (ParameterSchema('s', 'string', constraints={'allowed_values': ['a', 'b']}), 'c', 'one of'),
    (ParameterSchema('s', 'string', constraints={'pattern': '[a-z]{2}'}), 'abc', 'pattern'),
    (ParameterSchema('s', 'string', constraints={'max_length': 2}), 'abc', 'length'),
    (ParameterSchema('s', 'string', required=True), None, 'required'),
])
def test_check_parameter_rejects(schema, value, expected_issue):
    issues = check_parameter(schema, value, 'step')
    assert len(issues) == 1
    assert expected_issue in issues[0].message
    assert issues[0].field == f"parameters.{schema.name}"


def test_check_parameter_accepts_int_for_number():
    assert check_parameter(ParameterSchema('x', 'number'), 3, 'step') == []


def test_required_with_default_may_be_omitted():
    schema = ParameterSchema('language', 'string', required=True, default='en')
    assert check_parameter(schema, None) == []


def test_step_execution_resolves_defaults(table_definition):
    algorithm, resolved = validate_step_execution(
        table_definition, 'table_detection', 'grid_detector', {'max_tables': 3}
    )
    assert algorithm.code == 'grid_detector'
    assert resolved == {'confidence_threshold': 0.5, 'max_tables': 3}
    assert resolve_parameters(algorithm, None) == {'confidence_threshold': 0.5, 'max_tables': 10}


def test_step_execution_unknown_parameter(table_definition):
    with pytest.raises(ValidationError, match='unknown parameter'):
        validate_step_execution(table_definition, 'table_detection', 'grid_detector', {'colour': 'red'})


def test_step_execution_unknown_step(table_definition):
    with pytest.raises(NotFoundError):
        validate_step_execution(table_definition, 'no_such_step', 'grid_detector')


def test_step_execution_pinned_version(table_definition):
    with pytest.raises(ValidationError, match='grid_detector@9.9.9'):
        validate_step_execution(table_definition, 'table_detection', 'grid_detector', None, '9.9.9')
