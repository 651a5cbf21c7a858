"""
Shared fixtures: small synthetic expression matrices with a known block structure.
"""

import numpy as np
import pandas as pd
import pytest

from PyGFAP.config import WGCNAConfig

N_SAMPLES = 20
BLOCK_SIZE = 50


def latentFactors(rng, nSamples, nFactors):
    """independent standardized sample factors, orthogonalized so that blocks are uncorrelated"""
    raw = rng.normal(size=(nSamples, nFactors))
    raw = raw - raw.mean(axis=0)
    q, _ = np.linalg.qr(raw)
    return q * np.sqrt(nSamples - 1)


def blockMatrix(rng, nBlocks=2, blockSize=BLOCK_SIZE, nSamples=N_SAMPLES, noise=0.3, mean=10.0):
    """samples x genes matrix where each block of genes follows its own sample factor"""
    factors = latentFactors(rng, nSamples, nBlocks)
    columns = []
    for block in range(nBlocks):
        loadings = rng.uniform(1.5, 2.5, size=blockSize)
        values = mean + np.outer(factors[:, block], loadings) + noise * rng.normal(size=(nSamples, blockSize))
        columns.append(values)
    values = np.hstack(columns)
    samples = [f"sample_{i}" for i in range(nSamples)]
    genes = [f"gene_{i}" for i in range(values.shape[1])]
    return pd.DataFrame(values, index=samples, columns=genes), factors


@pytest.fixture
def rng():
    return np.random.default_rng(20221004)


@pytest.fixture
def blockData(rng):
    """(samples x genes expression, sample factors) with two blocks of 50 genes"""
    return blockMatrix(rng)


@pytest.fixture
def blockExpr(blockData):
    return blockData[0]


@pytest.fixture
def geneTable(blockExpr):
    """the same expression as genes x samples with a gene id column, the layout read from files"""
    table = blockExpr.T.reset_index()
    table = table.rename(columns={'index': 'gene_id'})
    return table


@pytest.fixture
def sampleInfo(blockData):
    blockExpr, factors = blockData
    return pd.DataFrame({'factor1': factors[:, 0],
                         'group': ['case' if i % 2 == 0 else 'control' for i in range(blockExpr.shape[0])],
                         'batch': ['a', 'b', 'c', 'd'] * (blockExpr.shape[0] // 4)},
                        index=blockExpr.index)


@pytest.fixture
def quietConfig():
    return WGCNAConfig(powers=[1, 2, 4, 6, 8, 10])
