import pytest

from orchestrator.corrections import diff_corrections, merge_corrections, merge_overlay, revert_corrections


def test_merge_overlay_is_deep_and_leaves_inputs_alone():
    base = {'tables': {'count': 2, 'items': [1, 2]}, 'title': 'raw'}
    overlay = {'tables': {'count': 3}, 'note': 'added'}

    merged = merge_overlay(base, overlay)

    assert merged == {'tables': {'count': 3, 'items': [1, 2]}, 'title': 'raw', 'note': 'added'}
    assert base == {'tables': {'count': 2, 'items': [1, 2]}, 'title': 'raw'}
    assert overlay == {'tables': {'count': 3}, 'note': 'added'}


def test_lists_are_replaced_not_merged():
    assert merge_overlay({'cells': [1, 2, 3]}, {'cells': [9]}) == {'cells': [9]}


def test_empty_overlay_returns_copy_of_base():
    base = {'a': {'b': 1}}
    merged = merge_overlay(base, {})
    assert merged == base
    assert merged is not base


def test_merge_corrections_accumulates():
    first = merge_corrections({}, {'rows': 4})
    second = merge_corrections(first, {'columns': 3, 'meta': {'checked': True}})
    assert second == {'rows': 4, 'columns': 3, 'meta': {'checked': True}}
    assert first == {'rows': 4}


def test_merge_corrections_rejects_non_mapping():
    with pytest.raises(TypeError):
        merge_corrections({}, ['rows'])


def test_revert_corrections():
    existing = {'rows': 4, 'columns': 3}
    assert revert_corrections(existing, ['rows']) == {'columns': 3}
    assert revert_corrections(existing) == {}
    assert existing == {'rows': 4, 'columns': 3}


def test_diff_corrections_reports_changed_leaves():
    result = {'rows': 2, 'meta': {'lang': 'en', 'pages': 1}}
    corrections = {'rows': 4, 'meta': {'lang': 'he', 'pages': 1}, 'extra': True}

    changes = diff_corrections(result, corrections)

    assert ('rows', 2, 4) in changes
    assert ('meta.lang', 'en', 'he') in changes
    assert ('extra', None, True) in changes
    assert all(path != 'meta.pages' for path, _, _ in changes)


def test_empty_mapping_on_a_new_key_is_kept():
    assert merge_corrections({}, {'notes': {}}) == {'notes': {}}
    assert merge_overlay({'notes': 'raw'}, {'notes': {}}) == {'notes': {}}
    assert merge_overlay({'notes': {'a': 1}}, {'notes': {}}) == {'notes': {'a': 1}}
