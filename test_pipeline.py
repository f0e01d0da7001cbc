#!/usr/bin/env python3
"""
End-to-end tests of the data preparation and beta-shared test pipelines on small
tables written to a temporary project directory.
"""

import sys
import tempfile
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent / 'src'
sys.path.insert(0, str(src_path))

import pandas as pd
import pytest
import yaml

from workflow_eve.config import get_config
from workflow_eve.errors import SchemaError
from workflow_eve.eve.delegate import BetaSharedResult
from workflow_eve.eve.pipeline import ComparativeTestPipeline
from workflow_eve.prep.pipeline import DataPrepPipeline
from workflow_eve.utils.dir_utils import SubDirs

TAXON = (
    "d__Bacteria; p__Firmicutes; c__Bacilli; o__Lactobacillales; "
    "f__Lactobacillaceae; g__Lactobacillus; s__reuteri"
)


def write_inputs(data_dir: Path, counts: pd.DataFrame, metadata: pd.DataFrame) -> dict:
    data_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        'counts': data_dir / 'counts.csv',
        'metadata': data_dir / 'metadata.csv',
        'taxonomy': data_dir / 'taxonomy.csv',
    }
    counts.to_csv(paths['counts'], index=False)
    metadata.to_csv(paths['metadata'], index=False)
    features = [c for c in counts.columns if c != 'SampleID']
    pd.DataFrame({
        'Feature ID': features,
        'Taxon': [TAXON] * len(features),
        'Confidence': [0.99] + [0.5] * (len(features) - 1),
    }).to_csv(paths['taxonomy'], index=False)
    return paths


def create_config(tmp: Path, paths: dict, min_depth: float) -> dict:
    config = get_config(None)
    config['project_dir'] = str(tmp / 'project')
    config['inputs'].update({k: str(v) for k, v in paths.items()})
    config['depth']['min_depth'] = min_depth
    return config


def run_prep(
    tmp: Path, counts, metadata, min_depth, make_figures=False, **sections
) -> DataPrepPipeline:
    paths = write_inputs(tmp / 'data', counts, metadata)
    config = create_config(tmp, paths, min_depth)
    for section, values in sections.items():
        config[section].update(values)
    return DataPrepPipeline(config, make_figures=make_figures).run()


def create_example():
    counts = pd.DataFrame({'SampleID': ['S1', 'S2'], 'f1': [5, 10], 'f2': [0, 20]})
    metadata = pd.DataFrame({'SampleID': ['S1', 'S2'], 'Group': ['Control', 'Disease']})
    return counts, metadata


def test_example_without_depth_filter():
    counts, metadata = create_example()
    with tempfile.TemporaryDirectory() as tmp:
        pipeline = run_prep(Path(tmp), counts, metadata, min_depth=0)

        assert len(pipeline.merged) == 2
        assert pipeline.merge_report.is_clean
        assert len(pipeline.aligned) == 2
        assert pipeline.aligned['Group'].notna().all()
        assert pipeline.aligned.set_index('SampleID')['Group'].to_dict() == {
            'S1': 'Control', 'S2': 'Disease'
        }

        tables = SubDirs(Path(tmp) / 'project').tables
        aligned = pd.read_csv(tables / 'aligned_dataset.csv')
        assert len(aligned) == 2
        otu = pd.read_csv(tables / 'otu_table.csv')
        assert list(otu.columns) == ['composite_id', 'f1', 'f2']
        tax = pd.read_csv(tables / 'tax_table.csv')
        assert tax['label'].tolist() == ['reuteri', 'Lactobacillus']
        assert list(tax.columns[:3]) == ['Feature ID', 'taxonomy', 'confidence']
        assert 'taxstring' not in tax.columns
        roles = yaml.safe_load((tables / 'column_roles.yaml').read_text())
        assert roles['abundance_columns'] == ['f1', 'f2']


def test_example_with_default_depth_threshold():
    counts, metadata = create_example()
    with tempfile.TemporaryDirectory() as tmp:
        pipeline = run_prep(Path(tmp), counts, metadata, min_depth=5141)
        assert len(pipeline.aligned) == 0
        assert pipeline.depths.tolist() == [5, 30]

        reports = SubDirs(Path(tmp) / 'project').reports
        depths = pd.read_csv(reports / 'sample_depths.csv')
        assert depths['total_reads'].tolist() == [5, 30]


def test_unmatched_samples_are_reported():
    counts, metadata = create_example()
    metadata = pd.DataFrame({'SampleID': ['S2', 'S3'], 'Group': ['Disease', 'Control']})
    with tempfile.TemporaryDirectory() as tmp:
        pipeline = run_prep(Path(tmp), counts, metadata, min_depth=0)
        assert pipeline.merge_report.unmatched == ['S1', 'S3']

        reports = SubDirs(Path(tmp) / 'project').reports
        unmatched = pd.read_csv(reports / 'merge_unmatched.csv')
        assert set(unmatched['SampleID']) == {'S1', 'S3'}
        # S3 has metadata only, so zero depth
        assert 'S3' not in set(pipeline.aligned['SampleID'])


def test_repeated_samples_are_deduplicated():
    counts = pd.DataFrame({
        'SampleID': ['S1', 'S1', 'S2'], 'f1': [100, 200, 300], 'f2': [1, 2, 3]
    })
    metadata = pd.DataFrame({
        'SampleID': ['S1', 'S2'],
        'Genotype': ['WT', 'KO'],
        'Group': ['Control', 'Disease'],
    })
    with tempfile.TemporaryDirectory() as tmp:
        pipeline = run_prep(Path(tmp), counts, metadata, min_depth=0)
        assert pipeline.aligned['composite_id'].tolist() == ['WT_S1', 'KO_S2']
        assert pipeline.aligned['f1'].tolist() == [100, 300]
        assert pipeline.dedup_report.ids == ['WT_S1']


def test_merge_policy_keeps_counts_numeric():
    counts = pd.DataFrame({
        'SampleID': ['S1', 'S1', 'S2'], 'f1': [100, 200, 300], 'f2': [1, 2, 3]
    })
    metadata = pd.DataFrame({
        'SampleID': ['S1', 'S2'],
        'Genotype': ['WT', 'KO'],
        'Group': ['Control', 'Disease'],
    })
    with tempfile.TemporaryDirectory() as tmp:
        pipeline = run_prep(
            Path(tmp), counts, metadata, min_depth=0, dedup={'policy': 'merge'}
        )
        assert pipeline.aligned['composite_id'].tolist() == ['WT_S1', 'KO_S2']
        assert pipeline.aligned['f1'].tolist() == [300, 300]
        assert pipeline.aligned['f2'].tolist() == [3, 3]
        assert pipeline.aligned['Group'].tolist() == ['Control', 'Disease']

        otu = pd.read_csv(pipeline.outputs['otu_table'])
        assert all(pd.api.types.is_numeric_dtype(otu[c]) for c in ['f1', 'f2'])


@pytest.mark.parametrize('collapse', [False, True])
def test_relabelled_columns_match_tax_table(collapse):
    counts = pd.DataFrame({
        'SampleID': ['S1', 'S2'], 'f1': [5, 10], 'f2': [0, 20], 'f3': [7, 1]
    })
    metadata = pd.DataFrame({'SampleID': ['S1', 'S2'], 'Group': ['Control', 'Disease']})
    with tempfile.TemporaryDirectory() as tmp:
        pipeline = run_prep(
            Path(tmp), counts, metadata, min_depth=0,
            taxonomy={'relabel_columns': True, 'collapse_duplicate_labels': collapse}
        )
        otu = pd.read_csv(pipeline.outputs['otu_table'])
        tax = pd.read_csv(pipeline.outputs['tax_table'])
        assert list(otu.columns[1:]) == tax['Feature ID'].tolist()

        if collapse:
            assert tax['Feature ID'].tolist() == ['reuteri', 'Lactobacillus']
            assert tax['source_features'].tolist() == ['f1', 'f2|f3']
            assert otu['Lactobacillus'].tolist() == [7, 21]
        else:
            assert tax['Feature ID'].tolist() == [
                'reuteri', 'Lactobacillus', 'Lactobacillus_2'
            ]
            assert tax['source_features'].tolist() == ['f1', 'f2', 'f3']


def test_schema_errors_before_processing():
    counts, metadata = create_example()
    with tempfile.TemporaryDirectory() as tmp:
        with pytest.raises(SchemaError):
            run_prep(Path(tmp), counts, metadata.rename(columns={'SampleID': 'id'}), 0)

    bad_counts = counts.assign(f1=[0.5, 2.0])
    with tempfile.TemporaryDirectory() as tmp:
        with pytest.raises(SchemaError):
            run_prep(Path(tmp), bad_counts, metadata, 0)

    with tempfile.TemporaryDirectory() as tmp:
        paths = write_inputs(Path(tmp) / 'data', counts, metadata)
        paths['counts'] = Path(tmp) / 'missing.csv'
        config = create_config(Path(tmp), paths, 0)
        with pytest.raises(FileNotFoundError):
            DataPrepPipeline(config, make_figures=False).run()


# ------------------------------ Beta-shared pipeline ------------------------------ #

def fake_delegate(inputs):
    taxa = list(inputs.matrix.index)
    return BetaSharedResult(
        shared_beta=2.0,
        lrt=pd.Series([10.0, 0.1][:len(taxa)], index=taxa),
        params=pd.DataFrame({'beta': [1.0, 3.0][:len(taxa)]}, index=taxa),
    )


def comparative_config(tmp: Path, prep: DataPrepPipeline) -> dict:
    tree_path = tmp / 'data' / 'species.nwk'
    tree_path.write_text("((mouse:1.0,rat:1.0):2.0,vole:3.0);\n")
    config = prep.cfg
    config['inputs']['aligned_table'] = str(prep.outputs['aligned'])
    config['inputs']['tree'] = str(tree_path)
    return config


def test_comparative_test_pipeline():
    counts = pd.DataFrame({
        'SampleID': ['S1', 'S2', 'S3', 'S4'],
        'f1': [100, 120, 400, 900],
        'f2': [50, 60, 55, 58],
    })
    metadata = pd.DataFrame({
        'SampleID': ['S1', 'S2', 'S3', 'S4'],
        'Genotype': ['WT', 'WT', 'WT', 'WT'],
        'Species': ['mouse', 'mouse', 'rat', 'vole'],
    })
    with tempfile.TemporaryDirectory() as tmp:
        tmp = Path(tmp)
        prep = run_prep(tmp, counts, metadata, min_depth=0)
        pipeline = ComparativeTestPipeline(
            comparative_config(tmp, prep), delegate=fake_delegate, make_figures=False
        ).run()

        assert pipeline.inputs.matrix.shape == (2, 4)
        assert pipeline.results.loc['f1', 'category'] == 'lineage-specific'
        assert pipeline.results.loc['f2', 'category'] == 'not significant'
        assert list(pipeline.subsets['lineage_specific'].index) == ['f1']
        assert pipeline.subsets['highly_variable'].empty

        results = pd.read_csv(pipeline.outputs['results'])
        assert results['taxon'].tolist() == ['f1', 'f2']
        assert 'WT_S1' in results.columns
        taxonomy = pd.read_csv(pipeline.outputs['lineage_specific_taxonomy'])
        assert taxonomy['Feature ID'].tolist() == ['f1']


def test_comparative_test_requires_tree():
    config = get_config(None)
    with tempfile.TemporaryDirectory() as tmp:
        config['project_dir'] = tmp
        with pytest.raises(SchemaError):
            ComparativeTestPipeline(config, delegate=fake_delegate).load()


def test_comparative_test_on_merged_duplicates():
    counts = pd.DataFrame({
        'SampleID': ['S1', 'S1', 'S2', 'S3', 'S4'],
        'f1': [40, 60, 120, 400, 900],
        'f2': [20, 30, 60, 55, 58],
    })
    metadata = pd.DataFrame({
        'SampleID': ['S1', 'S2', 'S3', 'S4'],
        'Genotype': ['WT', 'WT', 'WT', 'WT'],
        'Species': ['mouse', 'mouse', 'rat', 'vole'],
    })
    with tempfile.TemporaryDirectory() as tmp:
        tmp = Path(tmp)
        prep = run_prep(tmp, counts, metadata, min_depth=0, dedup={'policy': 'merge'})
        assert prep.dedup_report.ids == ['WT_S1']

        pipeline = ComparativeTestPipeline(
            comparative_config(tmp, prep), delegate=fake_delegate, make_figures=False
        ).run()
        assert pipeline.inputs.matrix.shape == (2, 4)
        assert pipeline.inputs.species.tolist() == ['mouse', 'mouse', 'rat', 'vole']
        assert pipeline.results.loc['f1', 'category'] == 'lineage-specific'


def test_pipelines_write_figures():
    counts = pd.DataFrame({
        'SampleID': ['S1', 'S2', 'S3', 'S4'],
        'f1': [100, 120, 400, 900],
        'f2': [50, 60, 55, 58],
    })
    metadata = pd.DataFrame({
        'SampleID': ['S1', 'S2', 'S3', 'S4'],
        'Genotype': ['WT', 'WT', 'WT', 'WT'],
        'Species': ['mouse', 'mouse', 'rat', 'vole'],
    })
    with tempfile.TemporaryDirectory() as tmp:
        tmp = Path(tmp)
        prep = run_prep(tmp, counts, metadata, min_depth=0, make_figures=True)
        assert prep.outputs['depth_histogram'].exists()

        pipeline = ComparativeTestPipeline(
            comparative_config(tmp, prep), delegate=fake_delegate, make_figures=True
        ).run()
        outputs = pipeline.outputs
        for name in ('volcano_plot', 'pca_scatter'):
            assert outputs[f'{name}_html'].exists()
            assert outputs[f'{name}_html'].suffix == '.html'
            assert outputs[name].exists()
        # Static exports are listed ahead of the HTML page when they succeed
        if 'volcano_plot_png' in outputs:
            assert outputs['volcano_plot'] == outputs['volcano_plot_png']
        assert outputs['dendrogram'].exists()
