import numpy as np
import pandas as pd
import pytest

from PyGFAP.errors import ComputationCancelled, ConfigurationError, NumericalDegeneracyWarning
from PyGFAP.network import adjacency, calBlockSize, checkAdjMat, correlation, defaultBlockSize, minBlocks, \
    TOMdissimilarity, TOMsimilarity


class TestCorrelation:
    def test_pearson_matches_numpy(self, blockExpr):
        cor = correlation(blockExpr, verbose=False)

        np.testing.assert_allclose(cor, np.corrcoef(blockExpr.values, rowvar=False), atol=1e-10)

    def test_spearman_matches_pandas(self, blockExpr):
        cor = correlation(blockExpr.iloc[:, :10], corType="spearman", verbose=False)

        np.testing.assert_allclose(cor, blockExpr.iloc[:, :10].corr(method="spearman").values, atol=1e-10)

    def test_unsupported_method(self, blockExpr):
        with pytest.raises(ConfigurationError):
            correlation(blockExpr, corType="kendall", verbose=False)


class TestAdjacency:
    @pytest.mark.parametrize("adjacencyType", ["signed", "unsigned", "signed hybrid"])
    def test_symmetric_and_in_range(self, blockExpr, adjacencyType):
        adj = adjacency(blockExpr, power=6, adjacencyType=adjacencyType, verbose=False)

        assert isinstance(adj, pd.DataFrame)
        assert adj.index.tolist() == blockExpr.columns.tolist()
        np.testing.assert_allclose(adj.values, adj.values.T)
        assert adj.values.min() >= 0
        assert adj.values.max() <= 1
        np.testing.assert_array_equal(np.diag(adj.values), 1)

    def test_signed_formula(self, blockExpr):
        cor = np.corrcoef(blockExpr.values, rowvar=False)

        adj = adjacency(blockExpr, power=3, adjacencyType="signed", verbose=False)

        expected = ((1 + cor) / 2) ** 3
        np.fill_diagonal(expected, 1)
        np.testing.assert_allclose(adj.values, expected, atol=1e-10)

    def test_signed_hybrid_drops_negative_correlation(self, blockExpr):
        cor = np.corrcoef(blockExpr.values, rowvar=False)

        adj = adjacency(blockExpr, power=2, adjacencyType="signed hybrid", verbose=False)

        assert (adj.values[cor < 0] == 0).all()

    def test_zero_variance_gene_is_disconnected(self, blockExpr):
        blockExpr['gene_5'] = 2.0

        with pytest.warns(NumericalDegeneracyWarning):
            adj = adjacency(blockExpr, power=6, verbose=False)

        row = adj.loc['gene_5'].drop('gene_5')
        assert (row == 0).all()
        assert (adj['gene_5'].drop('gene_5') == 0).all()
        assert adj.loc['gene_5', 'gene_5'] == 1
        assert not np.isnan(adj.values).any()

    def test_unknown_type(self, blockExpr):
        with pytest.raises(ConfigurationError):
            adjacency(blockExpr, adjacencyType="distance", verbose=False)

    def test_non_positive_power(self, blockExpr):
        with pytest.raises(ConfigurationError):
            adjacency(blockExpr, power=0, verbose=False)


class TestTOM:
    def naiveTOM(self, adj):
        adj = np.array(adj, dtype=float)
        np.fill_diagonal(adj, 0)
        k = adj.sum(axis=1)
        n = adj.shape[0]
        tom = np.empty_like(adj)
        for i in range(n):
            for j in range(n):
                shared = np.sum(adj[i, :] * adj[:, j])
                tom[i, j] = (shared + adj[i, j]) / (min(k[i], k[j]) + 1 - adj[i, j])
        np.fill_diagonal(tom, 1)
        return tom

    def test_matches_definition(self, blockExpr):
        adj = adjacency(blockExpr.iloc[:, 40:60], power=6, verbose=False)

        tom = TOMsimilarity(adj, verbose=False)

        np.testing.assert_allclose(tom.values, self.naiveTOM(adj.values), atol=1e-10)

    def test_blocks_and_threads(self, blockExpr):
        adj = adjacency(blockExpr, power=6, verbose=False)

        whole = TOMsimilarity(adj, verbose=False)
        threaded = TOMsimilarity(adj, nThreads=3, blockSize=13, verbose=False)

        np.testing.assert_allclose(whole.values, threaded.values, atol=1e-12)

    def test_dissimilarity_properties(self, blockExpr):
        adj = adjacency(blockExpr, power=6, verbose=False)

        dissTOM = TOMdissimilarity(TOMsimilarity(adj, verbose=False))

        values = dissTOM.values
        np.testing.assert_array_equal(values, values.T)
        np.testing.assert_array_equal(np.diag(values), 0)
        assert values.min() >= 0
        assert values.max() <= 1

    def test_blocks_are_separated(self, blockExpr):
        adj = adjacency(blockExpr, power=6, verbose=False)

        dissTOM = TOMdissimilarity(TOMsimilarity(adj, verbose=False)).values

        within = dissTOM[:50, :50][np.triu_indices(50, 1)]
        between = dissTOM[:50, 50:]
        assert within.max() < between.min()

    def test_zero_variance_gene_has_dissimilarity_one(self, blockExpr):
        blockExpr['gene_5'] = 2.0
        with pytest.warns(NumericalDegeneracyWarning):
            adj = adjacency(blockExpr, power=6, verbose=False)

        dissTOM = TOMdissimilarity(TOMsimilarity(adj, verbose=False))

        np.testing.assert_allclose(dissTOM.loc['gene_5'].drop('gene_5'), 1)

    def test_mean_denominator(self, blockExpr):
        adj = adjacency(blockExpr.iloc[:, :20], power=6, verbose=False)

        tom = TOMsimilarity(adj, TOMDenom="mean", verbose=False)

        assert tom.values.max() <= 1
        np.testing.assert_allclose(tom.values, tom.values.T)

    def test_invalid_adjacency(self):
        with pytest.raises(ConfigurationError):
            TOMsimilarity(np.array([[1.0, 0.5], [0.2, 1.0]]), verbose=False)
        with pytest.raises(ConfigurationError):
            checkAdjMat(np.array([[1.0, 2.0], [2.0, 1.0]]))

    def test_checkpoint_cancels(self, blockExpr):
        adj = adjacency(blockExpr, power=6, verbose=False)
        calls = []

        def checkpoint():
            calls.append(1)
            if len(calls) > 2:
                raise ComputationCancelled("stop")

        with pytest.raises(ComputationCancelled):
            TOMsimilarity(adj, blockSize=10, checkpoint=checkpoint, verbose=False)
        assert len(calls) == 3

    def test_default_blocks_check_cancellation_repeatedly(self, blockExpr):
        adj = adjacency(blockExpr, power=6, verbose=False)
        calls = []

        TOMsimilarity(adj, checkpoint=lambda: calls.append(1), verbose=False)

        assert len(calls) >= minBlocks

    def test_default_blocks_feed_every_thread(self, blockExpr):
        adj = adjacency(blockExpr, power=6, verbose=False)
        calls = []

        threaded = TOMsimilarity(adj, nThreads=4, checkpoint=lambda: calls.append(1), verbose=False)

        assert len(calls) > 4
        np.testing.assert_allclose(threaded.values, TOMsimilarity(adj, verbose=False).values, atol=1e-12)

    def test_timeout(self, blockExpr):
        adj = adjacency(blockExpr, power=6, verbose=False)

        with pytest.raises(ComputationCancelled):
            TOMsimilarity(adj, blockSize=10, timeout=1e-9, verbose=False)


class TestBlockSize:
    def test_limits(self):
        assert calBlockSize(100, maxMemoryAllocation=10 ** 12) == 100
        assert calBlockSize(1000, maxMemoryAllocation=8 * 3 * 1000 * 50) == 50
        assert calBlockSize(1000, maxMemoryAllocation=1) == 1

    def test_default_block_size(self):
        assert defaultBlockSize(1500, maxMemoryAllocation=10 ** 12) == 188
        assert defaultBlockSize(1500, nThreads=20, maxMemoryAllocation=10 ** 12) == 75
        assert defaultBlockSize(1000, maxMemoryAllocation=8 * 3 * 1000 * 50) == 50
        assert defaultBlockSize(3) == 1
