"""
End-to-end runs of the whole analysis on synthetic block data.
"""

import os

import numpy as np
import pandas as pd
import pytest

from PyGFAP import WGCNA, WGCNAConfig, readWGCNA
from PyGFAP.eigengenes import mergeCloseModules
from PyGFAP.errors import ComputationCancelled, ConfigurationError, DataQualityWarning

POWERS = [1, 2, 4, 6, 8, 10]


def runBlocks(geneTable, sampleInfo=None, **kwargs):
    wgcna = WGCNA(geneExp=geneTable, sampleInfo=sampleInfo, verbose=False, powers=POWERS, **kwargs)
    return wgcna.runWGCNA()


@pytest.fixture
def blockRun(geneTable, sampleInfo):
    return runBlocks(geneTable, sampleInfo)


class TestTwoBlocks:
    def test_each_block_is_one_module(self, blockRun):
        var = blockRun.datExpr.var

        first = var['moduleColors'].iloc[:50]
        second = var['moduleColors'].iloc[50:]
        assert first.nunique() == 1
        assert second.nunique() == 1
        assert first.iloc[0] != second.iloc[0]
        assert 'grey' not in var['moduleColors'].values
        assert sorted(var['moduleLabels'].unique()) == [1, 2]
        assert var['moduleLabels'].iloc[0] == 1

    def test_artifacts(self, blockRun):
        assert blockRun.power in POWERS or blockRun.power == blockRun.config.defaultPower
        assert blockRun.sft.shape[0] == len(POWERS)
        assert blockRun.adjacency.shape == (100, 100)
        assert blockRun.TOM.shape == (100, 100)
        assert blockRun.geneTree.nLeaves == 100
        assert len(blockRun.dynamicMods) == 100
        assert blockRun.mergeInfo['nMerges'] == 0
        assert blockRun.kME.shape == (100, 2)
        assert blockRun.powerIsFallback == (not blockRun.sft['selected'].any())

    def test_eigengene_table(self, blockRun, blockExpr):
        MEs = blockRun.getEigengenes()

        assert MEs.shape == (blockExpr.shape[0], 2)
        assert MEs.index.tolist() == blockExpr.index.tolist()
        assert set(MEs.columns) == {'ME' + color for color in blockRun.getModuleName()}

    def test_network_properties(self, blockRun):
        adj = blockRun.adjacency.values
        diss = blockRun.dissTOM.values

        np.testing.assert_allclose(adj, adj.T)
        assert adj.min() >= 0 and adj.max() <= 1
        np.testing.assert_array_equal(diss, diss.T)
        np.testing.assert_array_equal(np.diag(diss), 0)
        assert diss.min() >= 0 and diss.max() <= 1

    def test_merge_is_idempotent(self, blockRun):
        merge = mergeCloseModules(blockRun.datExpr.to_df(), blockRun.datExpr.var['moduleColors'].values,
                                  cutHeight=blockRun.config.MEDissThres, verbose=False)

        assert merge['nMerges'] == 0

    def test_deterministic(self, geneTable, sampleInfo, blockRun):
        again = runBlocks(geneTable, sampleInfo)

        np.testing.assert_array_equal(again.datExpr.var['moduleLabels'], blockRun.datExpr.var['moduleLabels'])
        np.testing.assert_array_equal(again.datExpr.var['moduleColors'], blockRun.datExpr.var['moduleColors'])

    def test_upstream_artifacts_are_not_modified(self, geneTable, sampleInfo):
        wgcna = WGCNA(geneExp=geneTable, sampleInfo=sampleInfo, verbose=False, powers=POWERS)
        wgcna.preprocess()
        clean = wgcna.datExpr

        wgcna.findModules()

        assert 'moduleColors' not in clean.var.columns
        assert 'moduleColors' not in wgcna.geneExpr.var.columns


class TestMinimumModuleSize:
    def test_no_natural_cluster_is_big_enough(self, geneTable):
        with pytest.warns(DataQualityWarning, match="No module"):
            wgcna = runBlocks(geneTable, minModuleSize=60)

        assert (wgcna.datExpr.var['moduleLabels'] == 0).all()
        assert (wgcna.datExpr.var['moduleColors'] == 'grey').all()
        assert wgcna.MEs.shape == (20, 0)

    def test_non_positive_minimum_module_size(self, geneTable):
        with pytest.raises(ConfigurationError):
            WGCNA(geneExp=geneTable, verbose=False, minModuleSize=0)


class TestTraits:
    def test_trait_equal_to_eigengene(self, blockRun):
        MEs = blockRun.MEs
        module = MEs.columns[0]
        blockRun.updateSampleInfo(sampleInfo=pd.DataFrame({'eigengene': MEs[module].values}, index=MEs.index))

        blockRun.analyseWGCNA()

        assert blockRun.moduleTraitCor.loc[module, 'eigengene'] == pytest.approx(1)
        assert blockRun.moduleTraitPvalue.loc[module, 'eigengene'] == pytest.approx(0, abs=1e-12)
        assert module in blockRun.significantModules

    def test_block_factor_is_significant(self, blockRun):
        blockRun.analyseWGCNA()

        module = 'ME' + blockRun.datExpr.var['moduleColors'].iloc[0]
        assert blockRun.moduleTraitCor.loc[module, 'factor1'] > 0.9
        assert module in blockRun.significantModules
        pvalues = blockRun.moduleTraitPvalue.values
        assert ((pvalues >= 0) & (pvalues <= 1)).all()
        cors = blockRun.moduleTraitCor.values
        assert ((cors >= -1) & (cors <= 1)).all()

    def test_module_trait_table(self, blockRun):
        blockRun.analyseWGCNA()

        table = blockRun.getModuleTraitTable()

        assert list(table.columns) == ['module', 'trait', 'cor', 'pvalue', 'nObs', 'significant']
        assert table.shape[0] == blockRun.moduleTraitCor.size
        assert table['significant'].tolist() == (table['pvalue'] < 0.05).tolist()


class TestZeroVarianceGene:
    def test_dropped_by_preprocess(self, geneTable, sampleInfo):
        geneTable.iloc[10, 1:] = 4.0

        with pytest.warns(DataQualityWarning):
            wgcna = runBlocks(geneTable, sampleInfo)

        assert 'gene_10' not in wgcna.datExpr.var_names
        assert wgcna.audit.loc[wgcna.audit['id'] == 'gene_10', 'reason'].tolist() == ['zero variance']
        assert wgcna.getModuleAssignment().shape[0] == 99


class TestOutputs:
    def test_module_assignment_order(self, blockRun):
        table = blockRun.getModuleAssignment()

        assert list(table.columns) == ['gene', 'moduleLabel', 'moduleColor', 'moduleSize']
        assert table.shape[0] == 100
        assert (np.diff(table['moduleSize'].values) <= 0).all()
        assert table['gene'].iloc[0] == 'gene_0'

    def test_unassigned_genes_come_last(self, blockRun):
        var = blockRun.datExpr.var.copy()
        var.loc['gene_3', 'moduleColors'] = 'grey'
        var.loc['gene_3', 'moduleLabels'] = 0
        blockRun.datExpr.var = var

        table = blockRun.getModuleAssignment()

        assert table['gene'].iloc[-1] == 'gene_3'

    def test_soft_threshold_table(self, blockRun):
        table = blockRun.getSoftThresholdTable()

        assert table['Power'].tolist() == POWERS

    def test_tables_before_running(self, geneTable):
        wgcna = WGCNA(geneExp=geneTable, verbose=False)

        with pytest.raises(ConfigurationError):
            wgcna.getModuleAssignment()
        with pytest.raises(ConfigurationError):
            wgcna.getModuleTraitTable()

    def test_export_tables(self, blockRun, tmp_path):
        blockRun.analyseWGCNA()

        paths = blockRun.exportTables(str(tmp_path))

        names = sorted(os.path.basename(path) for path in paths)
        assert names == ['audit.csv', 'eigengenes.csv', 'moduleAssignment.csv', 'moduleTraitCorrelation.csv',
                         'softThreshold.csv']
        assignment = pd.read_csv(tmp_path / 'moduleAssignment.csv')
        assert assignment.shape == (100, 4)

    def test_save_and_read(self, blockRun, tmp_path):
        blockRun.outputPath = str(tmp_path)
        blockRun.checkpoint = lambda: None

        path = blockRun.saveWGCNA()
        loaded = readWGCNA(path)

        assert loaded.name == blockRun.name
        pd.testing.assert_frame_equal(loaded.MEs, blockRun.MEs)
        assert loaded.checkpoint is None

    def test_read_missing_file(self, tmp_path):
        with pytest.raises(ValueError):
            readWGCNA(str(tmp_path / 'missing.p'))

    def test_gene_and_module_lookup(self, blockRun):
        color = blockRun.datExpr.var['moduleColors'].iloc[0]

        assert blockRun.getModulesGene('gene_0') == color
        genes = blockRun.getGeneModule(color)[color]
        assert genes.shape[0] == 50


class TestCancellation:
    def test_checkpoint_stops_the_run(self, geneTable):
        def checkpoint():
            raise ComputationCancelled("stopped by the user")

        wgcna = WGCNA(geneExp=geneTable, verbose=False, powers=POWERS, checkpoint=checkpoint)

        with pytest.raises(ComputationCancelled):
            wgcna.runWGCNA()
        assert wgcna.TOM is None

    def test_checkpoint_runs_during_network_steps(self, geneTable):
        calls = []

        WGCNA(geneExp=geneTable, verbose=False, powers=POWERS, checkpoint=lambda: calls.append(1)).findModules()

        # soft threshold blocks and topological overlap blocks
        assert len(calls) > 2

    def test_block_size_from_config(self, geneTable):
        calls = []

        WGCNA(geneExp=geneTable, verbose=False, powers=POWERS, blockSize=10,
              checkpoint=lambda: calls.append(1)).findModules()

        assert len(calls) == 20


class TestConfiguration:
    def test_config_with_overrides(self, geneTable):
        config = WGCNAConfig(minModuleSize=30)

        wgcna = WGCNA(geneExp=geneTable, config=config, verbose=False, deepSplit=1)

        assert wgcna.config.minModuleSize == 30
        assert wgcna.config.deepSplit == 1
        assert config.deepSplit == 2

    def test_fallback_power_is_recorded(self, geneTable):
        with pytest.warns(DataQualityWarning, match="default power"):
            wgcna = runBlocks(geneTable, RsquaredCut=1.0, MeanCut=-1)

        assert wgcna.powerIsFallback
        assert wgcna.power == wgcna.config.defaultPower
        assert not wgcna.getSoftThresholdTable()['selected'].any()

    def test_quiet_run_prints_nothing(self, geneTable, sampleInfo, capsys):
        runBlocks(geneTable, sampleInfo.iloc[:10])

        assert capsys.readouterr().out == ""
