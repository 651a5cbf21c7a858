import numpy as np
import pandas as pd
import pytest

from PyGFAP.config import WGCNAConfig
from PyGFAP.errors import ConfigurationError, DataQualityWarning
from PyGFAP.geneExp import GeneExp
from PyGFAP.preprocess import goodSamplesGenes, imputeMissing, preprocessExpression, relativeVarianceFilter, \
    sampleOutliers


def toAnndata(expr):
    table = expr.T.reset_index().rename(columns={'index': 'gene_id'})
    return GeneExp(geneExp=table).geneExpr


class TestGoodSamplesGenes:
    def test_clean_matrix(self, blockExpr):
        goodGenes, goodSamples, allOK = goodSamplesGenes(blockExpr, verbose=False)

        assert allOK
        assert goodGenes.all()
        assert goodSamples.all()

    def test_gene_with_too_many_missing_values(self, blockExpr):
        blockExpr.iloc[:15, 3] = np.nan

        goodGenes, goodSamples, allOK = goodSamplesGenes(blockExpr, verbose=False)

        assert not allOK
        assert not goodGenes[3]
        assert goodGenes.sum() == blockExpr.shape[1] - 1
        assert goodSamples.all()

    def test_zero_variance_gene(self, blockExpr):
        blockExpr['gene_7'] = 5.0

        goodGenes, _, _ = goodSamplesGenes(blockExpr, verbose=False)

        assert not goodGenes[7]

    def test_non_numeric(self, blockExpr):
        blockExpr['gene_0'] = 'a'

        with pytest.raises(ConfigurationError):
            goodSamplesGenes(blockExpr, verbose=False)


class TestFilters:
    def test_relative_variance_filter(self, blockExpr):
        blockExpr['gene_0'] = 1000 + np.linspace(0, 1, blockExpr.shape[0])

        keep = relativeVarianceFilter(blockExpr, minRelativeVariance=0.01, highExpressionFloor=100)

        assert not keep[0]
        assert keep[1:].all()

    def test_sample_outliers(self, blockExpr):
        blockExpr.iloc[0, :] = blockExpr.iloc[0, :] + 100

        keep = sampleOutliers(blockExpr, cutHeight=100)

        assert not keep[0]
        assert keep[1:].all()

    def test_no_sample_cut(self, blockExpr):
        assert sampleOutliers(blockExpr).all()

    @pytest.mark.parametrize("method", ["zero", "mean", "knn"])
    def test_impute(self, blockExpr, method):
        blockExpr.iloc[2, 4] = np.nan

        imputed = imputeMissing(blockExpr, method=method)

        assert not imputed.isnull().values.any()
        assert imputed.shape == blockExpr.shape
        if method == "zero":
            assert imputed.iloc[2, 4] == 0


class TestPreprocessExpression:
    def test_clean_data_is_kept(self, blockExpr):
        clean, audit = preprocessExpression(toAnndata(blockExpr), verbose=False)

        assert clean.shape == blockExpr.shape
        assert audit.shape[0] == 0
        assert list(audit.columns) == ['axis', 'id', 'reason']

    def test_zero_variance_gene_is_audited(self, blockExpr):
        blockExpr['gene_7'] = 3.0

        with pytest.warns(DataQualityWarning):
            clean, audit = preprocessExpression(toAnndata(blockExpr), verbose=False)

        assert 'gene_7' not in clean.var_names
        assert clean.shape[1] == blockExpr.shape[1] - 1
        row = audit[audit['id'] == 'gene_7'].iloc[0]
        assert row['axis'] == 'gene'
        assert row['reason'] == 'zero variance'

    def test_missing_values_are_audited(self, blockExpr):
        blockExpr.iloc[:15, 3] = np.nan
        blockExpr.iloc[5, 10] = np.nan

        with pytest.warns(DataQualityWarning):
            clean, audit = preprocessExpression(toAnndata(blockExpr), verbose=False)

        assert audit.loc[audit['id'] == 'gene_3', 'reason'].tolist() == ['too many missing values']
        assert not np.isnan(clean.X).any()

    def test_expression_cutoff(self, blockExpr):
        blockExpr['gene_1'] = np.linspace(0, 0.5, blockExpr.shape[0])
        config = WGCNAConfig(TPMcutoff=1)

        with pytest.warns(DataQualityWarning):
            clean, audit = preprocessExpression(toAnndata(blockExpr), config=config, verbose=False)

        assert 'gene_1' not in clean.var_names
        assert audit.loc[audit['id'] == 'gene_1', 'reason'].tolist() == ['below expression cutoff']

    def test_sample_outlier_is_audited(self, blockExpr):
        blockExpr.iloc[0, :] = blockExpr.iloc[0, :] + 100
        config = WGCNAConfig(sampleCut=100)

        with pytest.warns(DataQualityWarning):
            clean, audit = preprocessExpression(toAnndata(blockExpr), config=config, verbose=False)

        assert 'sample_0' not in clean.obs_names
        assert audit.loc[audit['id'] == 'sample_0', 'axis'].tolist() == ['sample']

    def test_empty_after_filtering(self, blockExpr):
        config = WGCNAConfig(TPMcutoff=1e6)

        with pytest.raises(ConfigurationError):
            preprocessExpression(toAnndata(blockExpr), config=config, verbose=False)

    def test_input_is_not_modified(self, blockExpr):
        blockExpr['gene_7'] = 3.0
        adata = toAnndata(blockExpr)

        with pytest.warns(DataQualityWarning):
            preprocessExpression(adata, verbose=False)

        assert adata.shape == blockExpr.shape

    def test_sample_info_follows_samples(self, blockExpr, sampleInfo):
        adata = toAnndata(blockExpr)
        adata.obs['factor1'] = sampleInfo['factor1'].values

        clean, _ = preprocessExpression(adata, verbose=False)

        assert clean.obs['factor1'].tolist() == sampleInfo['factor1'].tolist()
