#!/usr/bin/env python3
"""
Built-in analysis catalog for the in-memory backend.

Definitions are plain wire-format dictionaries; the algorithms are small
deterministic stand-ins keyed by algorithm code.
"""

import hashlib
from typing import Any, Callable, Dict, List

from orchestrator.models.definition import AnalysisDefinition

AlgorithmFunc = Callable[[str, Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


class AlgorithmFailure(Exception):
    """Raised by an algorithm that cannot process a document."""
    pass


TABLE_ANALYSIS = {
    'code': 'table_analysis',
    'version': '1.0.0',
    'name': 'Table Analysis',
    'description': 'Detect tables, recover their structure and read cell data',
    'supported_document_types': ['pdf', 'image'],
    'steps': [
        {
            'code': 'table_detection',
            'name': 'Table Detection',
            'description': 'Detect tables in the document',
            'order': 1,
            'algorithms': [
                {
                    'code': 'grid_detector',
                    'version': '1.0.0',
                    'name': 'Grid Detector',
                    'parameters': [
                        {'name': 'confidence_threshold', 'type': 'float', 'default': 0.5,
                         'constraints': {'min': 0.0, 'max': 1.0}},
                        {'name': 'max_tables', 'type': 'integer', 'default': 10,
                         'constraints': {'min': 1, 'max': 100}},
                    ],
                },
                {
                    'code': 'layout_detector',
                    'version': '2.0.0',
                    'name': 'Layout Detector',
                    'parameters': [
                        {'name': 'model', 'type': 'string', 'default': 'fast',
                         'constraints': {'allowed_values': ['fast', 'accurate']}},
                    ],
                },
            ],
        },
        {
            'code': 'table_structure',
            'name': 'Table Structure',
            'description': 'Recover rows, columns and merged cells',
            'order': 2,
            'algorithms': [
                {
                    'code': 'cell_splitter',
                    'version': '1.0.0',
                    'name': 'Cell Splitter',
                    'parameters': [
                        {'name': 'merge_cells', 'type': 'boolean', 'default': True},
                    ],
                },
            ],
        },
        {
            'code': 'table_data',
            'name': 'Table Data',
            'description': 'Read and normalise cell contents',
            'order': 3,
            'algorithms': [
                {
                    'code': 'cell_reader',
                    'version': '1.0.0',
                    'name': 'Cell Reader',
                    'parameters': [
                        {'name': 'normalize_whitespace', 'type': 'boolean', 'default': True},
                        {'name': 'locale', 'type': 'string', 'default': 'en',
                         'constraints': {'pattern': '[a-z]{2}'}},
                    ],
                },
            ],
        },
    ],
}

TEXT_EXTRACTION = {
    'code': 'text_extraction',
    'version': '1.0.0',
    'name': 'Text Extraction',
    'description': 'Extract running text',
    'supported_document_types': ['pdf', 'image', 'docx'],
    'steps': [
        {
            'code': 'ocr',
            'name': 'OCR',
            'order': 1,
            'algorithms': [
                {
                    'code': 'basic_ocr',
                    'version': '1.0.0',
                    'name': 'Basic OCR',
                    'parameters': [
                        {'name': 'language', 'type': 'string', 'default': 'en', 'required': True,
                         'constraints': {'allowed_values': ['en', 'he', 'ar']}},
                    ],
                },
            ],
        },
    ],
}


def _seed(document_id: str) -> int:
    return int(hashlib.sha256(document_id.encode('utf-8')).hexdigest()[:8], 16)


def grid_detector(document_id: str, parameters: Dict[str, Any], corrections: Dict[str, Any]) -> Dict[str, Any]:
    seed = _seed(document_id)
    count = min(1 + seed % 3, parameters.get('max_tables', 10))
    threshold = parameters.get('confidence_threshold', 0.5)
    tables = []
    for index in range(count):
        confidence = round(0.6 + ((seed >> index) % 40) / 100, 2)
        if confidence >= threshold:
            tables.append({'table_id': index, 'page': 1 + index, 'confidence': confidence,
                           'bbox': [50, 100 + 200 * index, 550, 260 + 200 * index]})
    return {'tables': tables, 'table_count': len(tables)}


def layout_detector(document_id: str, parameters: Dict[str, Any], corrections: Dict[str, Any]) -> Dict[str, Any]:
    result = grid_detector(document_id, {'confidence_threshold': 0.0, 'max_tables': 5}, corrections)
    result['model'] = parameters.get('model', 'fast')
    return result


def cell_splitter(document_id: str, parameters: Dict[str, Any], corrections: Dict[str, Any]) -> Dict[str, Any]:
    seed = _seed(document_id)
    rows, columns = 2 + seed % 4, 2 + (seed >> 4) % 3
    merged = [[0, 0, 0, 1]] if parameters.get('merge_cells', True) else []
    return {'rows': corrections.get('rows', rows), 'columns': corrections.get('columns', columns),
            'merged_cells': merged}


def cell_reader(document_id: str, parameters: Dict[str, Any], corrections: Dict[str, Any]) -> Dict[str, Any]:
    seed = _seed(document_id)
    cells = [[f"r{row}c{column}:{(seed >> (row + column)) % 100}" for column in range(3)] for row in range(3)]
    if parameters.get('normalize_whitespace', True):
        cells = [[' '.join(cell.split()) for cell in row] for row in cells]
    return {'cells': cells, 'locale': parameters.get('locale', 'en')}


def basic_ocr(document_id: str, parameters: Dict[str, Any], corrections: Dict[str, Any]) -> Dict[str, Any]:
    if document_id.endswith('.corrupt'):
        raise AlgorithmFailure(f"document {document_id} is unreadable")
    return {'language': parameters.get('language', 'en'), 'text': f"Extracted text of {document_id}",
            'pages': 1 + _seed(document_id) % 5}


def builtin_definitions() -> List[AnalysisDefinition]:
    return [AnalysisDefinition.from_dict(TABLE_ANALYSIS), AnalysisDefinition.from_dict(TEXT_EXTRACTION)]


def builtin_algorithms() -> Dict[str, AlgorithmFunc]:
    return {
        'grid_detector': grid_detector,
        'layout_detector': layout_detector,
        'cell_splitter': cell_splitter,
        'cell_reader': cell_reader,
        'basic_ocr': basic_ocr,
    }
