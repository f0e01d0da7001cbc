#!/usr/bin/env python3
"""
Tests for building and validating beta-shared test inputs.
"""

import io
import sys
import tempfile
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent / 'src'
sys.path.insert(0, str(src_path))

import numpy as np
import pandas as pd
import pytest
from skbio import TreeNode

from workflow_eve.errors import PreconditionError
from workflow_eve.eve.inputs import (
    EVEInputs, build_eve_inputs, log_transform, validate_eve_inputs
)

NEWICK = "((mouse:1.0,rat:1.0):2.0,vole:3.0);"


def create_tree(newick: str = NEWICK) -> TreeNode:
    return TreeNode.read(io.StringIO(newick), format='newick')


def create_test_data():
    return pd.DataFrame({
        'composite_id': ['WT_S1', 'WT_S2', 'KO_S3', 'WT_S4'],
        'Species': ['mouse', 'mouse', 'rat', 'vole'],
        'f1': [0, 1, 3, 7],
        'f2': [15, 3, 0, 1],
    })


def test_log_transform():
    values = pd.DataFrame({'a': [0, 1, 3]})
    assert log_transform(values)['a'].tolist() == [0.0, 1.0, 2.0]
    natural = log_transform(values, base=None, pseudocount=0)
    assert np.isneginf(natural['a'].iloc[0])


def test_build_inputs_orients_and_aligns():
    inputs = build_eve_inputs(create_test_data(), ['f1', 'f2'], create_tree())

    assert inputs.matrix.shape == (2, 4)
    assert list(inputs.matrix.index) == ['f1', 'f2']
    assert list(inputs.matrix.columns) == ['WT_S1', 'WT_S2', 'KO_S3', 'WT_S4']
    assert list(inputs.species.index) == list(inputs.matrix.columns)
    assert inputs.species.tolist() == ['mouse', 'mouse', 'rat', 'vole']
    assert inputs.matrix.loc['f1', 'WT_S4'] == pytest.approx(3.0)
    assert inputs.n_taxa == 2 and inputs.n_samples == 4


def test_species_not_in_tree():
    table = create_test_data()
    table.loc[3, 'Species'] = 'hamster'
    with pytest.raises(PreconditionError) as excinfo:
        build_eve_inputs(table, ['f1', 'f2'], create_tree())
    problems = ' '.join(excinfo.value.problems)
    assert 'hamster' in problems
    # vole is now a tip without samples
    assert 'vole' in problems


def test_missing_species_label():
    table = create_test_data()
    table.loc[0, 'Species'] = np.nan
    with pytest.raises(PreconditionError):
        build_eve_inputs(table, ['f1', 'f2'], create_tree())


def test_missing_columns():
    with pytest.raises(PreconditionError):
        build_eve_inputs(create_test_data(), ['f1', 'f9'], create_tree())


def test_branch_lengths_required():
    tree = create_tree("((mouse:1.0,rat):2.0,vole:3.0);")
    with pytest.raises(PreconditionError) as excinfo:
        build_eve_inputs(create_test_data(), ['f1', 'f2'], tree)
    assert any('without length' in p for p in excinfo.value.problems)


def test_non_finite_values_rejected():
    table = create_test_data()
    table['f1'] = table['f1'].astype(float)
    table.loc[1, 'f1'] = np.nan
    with pytest.raises(PreconditionError) as excinfo:
        build_eve_inputs(table, ['f1', 'f2'], create_tree())
    assert any('non-finite' in p for p in excinfo.value.problems)


def test_misaligned_species_vector():
    inputs = build_eve_inputs(create_test_data(), ['f1', 'f2'], create_tree())
    shuffled = EVEInputs(
        tree=inputs.tree,
        matrix=inputs.matrix,
        species=inputs.species.iloc[::-1],
    )
    with pytest.raises(PreconditionError) as excinfo:
        validate_eve_inputs(shuffled)
    assert any('order' in p for p in excinfo.value.problems)

    short = EVEInputs(
        tree=inputs.tree, matrix=inputs.matrix, species=inputs.species.iloc[:3]
    )
    with pytest.raises(PreconditionError):
        validate_eve_inputs(short)


def test_duplicated_sample_columns():
    table = create_test_data()
    table.loc[1, 'composite_id'] = 'WT_S1'
    with pytest.raises(PreconditionError) as excinfo:
        build_eve_inputs(table, ['f1', 'f2'], create_tree())
    assert any('duplicated sample columns' in p for p in excinfo.value.problems)


def test_write_inputs():
    inputs = build_eve_inputs(create_test_data(), ['f1', 'f2'], create_tree())
    with tempfile.TemporaryDirectory() as tmp:
        paths = inputs.write(tmp)
        matrix = pd.read_csv(paths['matrix'], index_col=0)
        species = pd.read_csv(paths['species'])
        tree = TreeNode.read(str(paths['tree']), format='newick')

    assert list(matrix.columns) == list(inputs.matrix.columns)
    assert species['sample'].tolist() == list(inputs.matrix.columns)
    assert species['species'].tolist() == inputs.species.tolist()
    assert sorted(t.name for t in tree.tips()) == ['mouse', 'rat', 'vole']
