import math
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import psutil
from scipy.stats import rankdata

from PyGFAP.config import networkTypes, TOMDenoms, corTypes
from PyGFAP.errors import ConfigurationError, ComputationCancelled, NumericalDegeneracyWarning
from PyGFAP.utils import report, warn

# minimum number of blocks the gene x gene steps are split into by default
minBlocks = 8


def calBlockSize(matrixSize, rectangularBlocks=True, maxMemoryAllocation=None, overheadFactor=3):
    """
    number of genes that can be processed at once so that a block of the gene x gene matrix fits in memory

    :param matrixSize: number of genes
    :type matrixSize: int
    :param maxMemoryAllocation: bytes we are allowed to use (default: available memory)
    :type maxMemoryAllocation: int
    """
    if maxMemoryAllocation is None:
        maxAlloc = psutil.virtual_memory().available / 8
    else:
        maxAlloc = maxMemoryAllocation / 8

    maxAlloc = maxAlloc / overheadFactor

    if rectangularBlocks:
        blockSz = math.floor(maxAlloc / max(matrixSize, 1))
    else:
        blockSz = math.floor(math.sqrt(maxAlloc))

    return max(1, min(matrixSize, blockSz))


def defaultBlockSize(nGenes, nThreads=1, maxMemoryAllocation=None):
    """
    block size that fits in memory and splits the genes into at least max(nThreads, minBlocks) blocks
    """
    nBlocks = max(nThreads, minBlocks)
    return max(1, min(calBlockSize(nGenes, rectangularBlocks=True, maxMemoryAllocation=maxMemoryAllocation),
                      math.ceil(nGenes / nBlocks)))


def checkCancellation(checkpoint=None, deadline=None, timeout=None, step="calculation"):
    """
    call the checkpoint and raise ComputationCancelled once the deadline has passed
    """
    if checkpoint is not None:
        checkpoint()
    if deadline is not None and time.monotonic() > deadline:
        raise ComputationCancelled(f"{step} exceeded the timeout of {timeout} seconds.")


def standardize(datExpr, corType="pearson"):
    """
    Scale each gene (column) so that Z.T @ Z / (n - 1) is the correlation matrix. Spearman correlation is the pearson
    correlation of ranks.

    :param datExpr: expression data, samples in rows and genes in columns
    :type datExpr: pandas dataframe or ndarray

    :return: scaled data and mask of zero-variance genes
    :rtype: tuple(ndarray, ndarray)
    """
    if corType not in corTypes:
        raise ConfigurationError(f"Unsupported correlation method {corType}. Recognized values are {corTypes}")
    values = np.asarray(datExpr, dtype=float)
    if corType == "spearman":
        values = rankdata(values, axis=0)
    centered = values - values.mean(axis=0)
    sd = centered.std(axis=0, ddof=1) if values.shape[0] > 1 else np.zeros(values.shape[1])
    zeroVar = ~(sd > 1e-12 * np.maximum(1, np.abs(values).max(axis=0)))
    sd[zeroVar] = 1
    Z = centered / sd
    Z[:, zeroVar] = 0
    return Z, zeroVar


def warnZeroVariance(datExpr, zeroVar, verbose=True):
    if zeroVar.any():
        names = datExpr.columns[zeroVar].tolist() if isinstance(datExpr, pd.DataFrame) else np.where(zeroVar)[0]
        warn(f"{int(zeroVar.sum())} gene(s) with zero variance: {list(names)}; their correlations are set to 0.",
             category=NumericalDegeneracyWarning, verbose=verbose)


def correlationFromScaled(Z, selectCols=None):
    """
    correlation of all genes against selectCols from the output of standardize
    """
    if selectCols is None:
        cor = Z.T @ Z / (Z.shape[0] - 1)
        cor = (cor + cor.T) / 2
        selectCols = np.arange(Z.shape[1])
    else:
        selectCols = np.asarray(selectCols)
        cor = Z.T @ Z[:, selectCols] / (Z.shape[0] - 1)
    np.clip(cor, -1, 1, out=cor)
    # self correlation
    cor[selectCols, np.arange(len(selectCols))] = 1
    return cor


def correlation(datExpr, corType="pearson", selectCols=None, verbose=True):
    """
    gene x gene correlation matrix; genes with zero variance are correlated 0 with every other gene

    :param datExpr: expression data, samples in rows and genes in columns
    :type datExpr: pandas dataframe
    :param corType: "pearson" or "spearman" (default: "pearson")
    :type corType: str
    :param selectCols: indices of genes to use as columns of the result (default: all)
    :type selectCols: list of int

    :return: correlation matrix
    :rtype: ndarray
    """
    Z, zeroVar = standardize(datExpr, corType=corType)
    warnZeroVariance(datExpr, zeroVar, verbose=verbose)
    return correlationFromScaled(Z, selectCols=selectCols)


def transformCorrelation(cor, adjacencyType="signed", power=1, zeroVar=None):
    """
    turn correlations into adjacencies: signed ((1 + cor) / 2) ** power, unsigned |cor| ** power and
    signed hybrid max(cor, 0) ** power
    """
    if adjacencyType not in networkTypes:
        raise ConfigurationError(f"Unrecognized 'type' {adjacencyType}. Recognized values are {networkTypes}")
    if adjacencyType == "unsigned":
        adj = np.abs(cor)
    elif adjacencyType == "signed":
        adj = (1 + cor) / 2
    else:
        adj = np.where(cor < 0, 0, cor)
    adj = adj ** power
    if zeroVar is not None and zeroVar.any():
        # zero-variance genes are not connected to anything
        adj[zeroVar, :] = 0
    return adj


def adjacency(datExpr, power=6, adjacencyType="signed", corType="pearson", verbose=True):
    """
    Calculates network adjacency from given expression data

    :param datExpr: expression data, samples in rows and genes in columns
    :type datExpr: pandas dataframe
    :param power: soft thresholding power (default: 6)
    :type power: float
    :param adjacencyType: "unsigned", "signed" or "signed hybrid" (default: "signed")
    :type adjacencyType: str
    :param corType: "pearson" or "spearman" (default: "pearson")
    :type corType: str

    :return: adjacency matrix, symmetric, diagonal 1
    :rtype: pandas dataframe
    """
    report("calculating adjacency matrix ...", verbose=verbose)
    if adjacencyType not in networkTypes:
        raise ConfigurationError(f"Unrecognized 'type' {adjacencyType}. Recognized values are {networkTypes}")
    if power <= 0:
        raise ConfigurationError("power must be positive.")

    Z, zeroVar = standardize(datExpr, corType=corType)
    warnZeroVariance(datExpr, zeroVar, verbose=verbose)
    cor = correlationFromScaled(Z)
    adj = transformCorrelation(cor, adjacencyType=adjacencyType, power=power, zeroVar=zeroVar)
    adj[:, zeroVar] = 0
    np.fill_diagonal(adj, 1)

    report("\tDone..\n", color='', verbose=verbose)

    return pd.DataFrame(adj, index=datExpr.columns, columns=datExpr.columns)


def checkAdjMat(adjMat, min=0, max=1):
    adjMat = np.asarray(adjMat)
    shape = adjMat.shape
    if shape is None or len(shape) != 2:
        raise ConfigurationError("adjacency is not two-dimensional")
    if not issubclass(adjMat.dtype.type, np.floating):
        raise ConfigurationError("adjacency is not numeric")
    if shape[0] != shape[1]:
        raise ConfigurationError("adjacency is not square")
    if np.isnan(adjMat).any():
        raise ConfigurationError("adjacency contains missing values")
    if np.max(np.fabs(np.subtract(adjMat, adjMat.T))) > 1e-12:
        raise ConfigurationError("adjacency is not symmetric")
    if np.min(adjMat) < min or np.max(adjMat) > max:
        raise ConfigurationError(f"some entries are not between {min} and {max}")


def _tomBlock(adjMat, k, rows, TOMDenom):
    block = adjMat[rows, :]
    L = block @ adjMat
    if TOMDenom == "min":
        denom = np.minimum.outer(k[rows], k)
    else:
        denom = np.add.outer(k[rows], k) / 2
    return (L + block) / (denom + 1 - block)


def TOMsimilarity(adjMat, TOMDenom="min", nThreads=1, blockSize=None, timeout=None, checkpoint=None,
                  verbose=True):
    """
    Calculation of the topological overlap matrix from a given adjacency matrix. Rows are computed in independent
    blocks, optionally on several threads.

    :param adjMat: adjacency matrix
    :type adjMat: pandas dataframe or ndarray
    :param TOMDenom: "min" or "mean" (default: "min")
    :type TOMDenom: str
    :param nThreads: number of threads (default: 1)
    :type nThreads: int
    :param blockSize: number of rows per block (default: at least max(nThreads, minBlocks) blocks fitting in memory)
    :type blockSize: int
    :param timeout: seconds after which the calculation is cancelled (default: None)
    :type timeout: float
    :param checkpoint: function called before each block; it can raise ComputationCancelled to stop the calculation
    :type checkpoint: callable

    :return: topological overlap matrix, diagonal 1
    :rtype: pandas dataframe
    """
    if TOMDenom not in TOMDenoms:
        raise ConfigurationError(f"Invalid 'TOMDenom' {TOMDenom}. Recognized values are {TOMDenoms}")
    names = adjMat.index if isinstance(adjMat, pd.DataFrame) else None
    checkAdjMat(np.asarray(adjMat, dtype=float), min=0, max=1)

    report("calculating TOM similarity matrix ...", verbose=verbose)

    adj = np.array(adjMat, dtype=float)
    # Prepare adjacency
    np.fill_diagonal(adj, 0)
    k = adj.sum(axis=1)
    nGenes = adj.shape[0]
    if blockSize is None:
        blockSize = defaultBlockSize(nGenes, nThreads=nThreads)
    blocks = [np.arange(start, min(start + blockSize, nGenes)) for start in range(0, nGenes, blockSize)]
    deadline = None if timeout is None else time.monotonic() + timeout

    def run(rows):
        checkCancellation(checkpoint, deadline, timeout, step="TOM calculation")
        return rows, _tomBlock(adj, k, rows, TOMDenom)

    tom = np.empty_like(adj)
    if nThreads > 1 and len(blocks) > 1:
        with ThreadPoolExecutor(max_workers=nThreads) as executor:
            futures = [executor.submit(run, rows) for rows in blocks]
            try:
                for future in futures:
                    rows, values = future.result()
                    tom[rows, :] = values
            except ComputationCancelled:
                for future in futures:
                    future.cancel()
                raise
    else:
        for rows in blocks:
            rows, values = run(rows)
            tom[rows, :] = values

    np.clip(tom, 0, 1, out=tom)
    tom = (tom + tom.T) / 2
    np.fill_diagonal(tom, 1)

    report("\tDone..\n", color='', verbose=verbose)

    return pd.DataFrame(tom, index=names, columns=names)


def TOMdissimilarity(TOM):
    """
    1 - TOM, symmetric with a zero diagonal and values between 0 and 1
    """
    diss = 1 - np.asarray(TOM, dtype=float)
    np.clip(diss, 0, 1, out=diss)
    diss = (diss + diss.T) / 2
    np.fill_diagonal(diss, 0)
    if isinstance(TOM, pd.DataFrame):
        return pd.DataFrame(diss, index=TOM.index, columns=TOM.columns)
    return diss
