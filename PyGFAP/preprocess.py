import warnings

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist
from scipy.cluster.hierarchy import linkage, cut_tree
from sklearn.impute import KNNImputer

from PyGFAP.config import WGCNAConfig
from PyGFAP.errors import ConfigurationError
from PyGFAP.utils import report, warn, BOLD, OKBLUE, OKGREEN

auditColumns = ['axis', 'id', 'reason']


def _auditRows(axis, ids, reason):
    return [{'axis': axis, 'id': str(i), 'reason': reason} for i in ids]


# Filter genes with too many missing entries
def goodGenesFun(datExpr, useSamples=None, useGenes=None, minFraction=1 / 2, minNSamples=4, tol=None):
    """
    define good genes

    :param datExpr: expression data, samples in rows and genes in columns
    :type datExpr: pandas dataframe

    :return: boolean mask over genes
    :rtype: ndarray
    """
    if tol is None:
        tol = 1e-10 * np.nanmax(np.abs(datExpr.values)) if np.isfinite(datExpr.values).any() else 0
    if useGenes is None:
        useGenes = np.repeat(True, datExpr.shape[1])
    if useSamples is None:
        useSamples = np.repeat(True, datExpr.shape[0])

    if len(useGenes) != datExpr.shape[1]:
        raise ValueError("Length of useGenes is not compatible with number of columns in datExpr.")
    if len(useSamples) != datExpr.shape[0]:
        raise ValueError("Length of useSamples is not compatible with number of rows in datExpr.")

    nSamples = np.sum(useSamples)
    data = datExpr.values[useSamples, :]
    nNAsGenes = np.isnan(data).sum(axis=0)
    with warnings.catch_warnings():
        # all-missing genes
        warnings.simplefilter("ignore", RuntimeWarning)
        var = np.nanvar(data, axis=0) if data.shape[0] > 0 else np.zeros(data.shape[1])
    var[np.isnan(var)] = 0

    gg = np.logical_and(useGenes, nNAsGenes < (1 - minFraction) * nSamples)
    gg = np.logical_and(gg, var > tol ** 2)
    gg = np.logical_and(gg, nSamples - nNAsGenes >= minNSamples)

    return gg


# Filter samples with too many missing entries
def goodSamplesFun(datExpr, useSamples=None, useGenes=None, minFraction=1 / 2, minNGenes=4):
    """
    define good samples
    """
    if useGenes is None:
        useGenes = np.repeat(True, datExpr.shape[1])
    if useSamples is None:
        useSamples = np.repeat(True, datExpr.shape[0])

    if len(useGenes) != datExpr.shape[1]:
        raise ValueError("Length of useGenes is not compatible with number of columns in datExpr.")
    if len(useSamples) != datExpr.shape[0]:
        raise ValueError("Length of useSamples is not compatible with number of rows in datExpr.")

    nGenes = np.sum(useGenes)
    nNAsSamples = np.isnan(datExpr.values[:, useGenes]).sum(axis=1)

    goodSamples = np.logical_and(useSamples, nNAsSamples < (1 - minFraction) * nGenes)
    goodSamples = np.logical_and(goodSamples, nGenes - nNAsSamples >= minNGenes)

    return goodSamples


# Check that all genes and samples have sufficiently low numbers of missing values.
def goodSamplesGenes(datExpr, minFraction=1 / 2, minNSamples=4, minNGenes=4, tol=None, verbose=True):
    """
    Iteratively remove genes and samples with too many missing values (and genes with zero variance)
    until nothing changes

    :param datExpr: expression data, samples in rows and genes in columns
    :type datExpr: pandas dataframe

    :return: good genes mask, good samples mask and whether everything passed
    :rtype: tuple
    """
    if not all(pd.api.types.is_numeric_dtype(dtype) for dtype in datExpr.dtypes):
        raise ConfigurationError("datExpr must contain numeric data.")

    goodGenes = None
    goodSamples = None
    nBadGenes = 0
    nBadSamples = 0
    changed = True
    report("\tDetecting genes and samples with too many missing values...", verbose=verbose)
    while changed:
        goodGenes = goodGenesFun(datExpr, goodSamples, goodGenes, minFraction=minFraction,
                                 minNSamples=minNSamples, tol=tol)
        goodSamples = goodSamplesFun(datExpr, goodSamples, goodGenes, minFraction=minFraction,
                                     minNGenes=minNGenes)
        changed = (np.logical_not(goodGenes).sum() > nBadGenes) or \
                  (np.logical_not(goodSamples).sum() > nBadSamples)
        nBadGenes = np.logical_not(goodGenes).sum()
        nBadSamples = np.logical_not(goodSamples).sum()

    allOK = (nBadGenes + nBadSamples == 0)

    return goodGenes, goodSamples, allOK


def relativeVarianceFilter(datExpr, minRelativeVariance=0.0, highExpressionFloor=float('inf')):
    """
    flag genes with high absolute expression but low relative variance (std / mean) which are most likely technical
    artifacts

    :return: boolean mask over genes, True for genes to keep
    :rtype: ndarray
    """
    mean = np.nanmean(datExpr.values, axis=0)
    std = np.nanstd(datExpr.values, axis=0, ddof=1)
    with np.errstate(invalid='ignore', divide='ignore'):
        ratio = np.where(mean != 0, std / np.abs(mean), np.inf)
    flagged = np.logical_and(ratio < minRelativeVariance, mean > highExpressionFloor)
    return np.logical_not(flagged)


def sampleOutliers(datExpr, cutHeight=float('inf')):
    """
    cluster samples (average linkage on euclidean distances) and keep the samples under the cut

    :return: boolean mask over samples, True for samples to keep
    :rtype: ndarray
    """
    if np.isinf(cutHeight) or datExpr.shape[0] < 3:
        return np.repeat(True, datExpr.shape[0])
    sampleTree = linkage(pdist(datExpr.fillna(0).values), method="average")
    clust = cut_tree(sampleTree, height=cutHeight)[:, 0]
    # keep the biggest cluster
    keep = np.bincount(clust).argmax()
    return clust == keep


def imputeMissing(datExpr, method="zero"):
    """
    replace the missing values left after filtering

    :param method: "zero" replaces them with 0, "mean" with the gene mean and "knn" uses a k-nearest neighbour imputer
    :type method: str
    """
    if not datExpr.isnull().values.any():
        return datExpr
    if method == "zero":
        return datExpr.fillna(0)
    elif method == "mean":
        return datExpr.fillna(datExpr.mean(axis=0)).fillna(0)
    elif method == "knn":
        # define imputer
        imputer = KNNImputer(n_neighbors=min(10, max(1, datExpr.shape[0] - 1)))
        values = imputer.fit_transform(datExpr.values)
        return pd.DataFrame(values, index=datExpr.index, columns=datExpr.columns)
    raise ConfigurationError(f"Unrecognized impute policy {method}.")


def preprocessExpression(geneExpr, config=None, verbose=True):
    """
    Clean an expression anndata (samples x genes): expression floor, missing values, zero and low relative variance,
    sample outliers and imputation of remaining missing values.

    :param geneExpr: raw expression data
    :type geneExpr: anndata
    :param config: parameters of the analysis
    :type config: WGCNAConfig
    :param verbose: print progress
    :type verbose: bool

    :return: clean expression anndata and the audit of every removed gene and sample
    :rtype: tuple(anndata, pandas dataframe)
    """
    if config is None:
        config = WGCNAConfig()
    report(f"{BOLD}{OKBLUE}Pre-processing...", verbose=verbose)

    datExpr = geneExpr.to_df()
    audit = []

    if datExpr.shape[0] == 0 or datExpr.shape[1] == 0:
        raise ConfigurationError("Expression matrix is empty.")

    # Remove genes which are never expressed above the cutoff
    if config.TPMcutoff is not None:
        expressed = (datExpr > config.TPMcutoff).any(axis=0).values
        audit.extend(_auditRows('gene', datExpr.columns[~expressed], 'below expression cutoff'))
        datExpr = datExpr.loc[:, expressed]
        if datExpr.shape[1] == 0:
            raise ConfigurationError(f"No gene is expressed above TPMcutoff={config.TPMcutoff}.")

    # Check that all genes and samples have sufficiently low numbers of missing values.
    goodGenes, goodSamples, allOK = goodSamplesGenes(datExpr, minFraction=config.minFraction,
                                                     minNSamples=config.minNSamples,
                                                     minNGenes=config.minNGenes, verbose=verbose)
    if not allOK:
        nas = datExpr.isnull()
        for gene in datExpr.columns[~goodGenes]:
            reason = 'too many missing values' if nas[gene].any() else 'zero variance'
            audit.append({'axis': 'gene', 'id': str(gene), 'reason': reason})
        audit.extend(_auditRows('sample', datExpr.index[~goodSamples], 'too many missing values'))
        report(f"\t{np.size(goodGenes) - np.count_nonzero(goodGenes)} gene(s) and "
               f"{np.size(goodSamples) - np.count_nonzero(goodSamples)} sample(s) detected as outliers!",
               color=OKGREEN, verbose=verbose)
        # Remove the offending genes and samples from the data:
        datExpr = datExpr.loc[goodSamples, goodGenes]

    if datExpr.shape[0] == 0 or datExpr.shape[1] == 0:
        raise ConfigurationError("Expression matrix is empty after removing genes and samples with missing values.")

    if config.minRelativeVariance > 0:
        keep = relativeVarianceFilter(datExpr, minRelativeVariance=config.minRelativeVariance,
                                      highExpressionFloor=config.highExpressionFloor)
        audit.extend(_auditRows('gene', datExpr.columns[~keep], 'low relative variance'))
        datExpr = datExpr.loc[:, keep]

    keep = sampleOutliers(datExpr, cutHeight=config.sampleCut)
    audit.extend(_auditRows('sample', datExpr.index[~keep], 'sample clustering outlier'))
    datExpr = datExpr.loc[keep, :]

    if datExpr.shape[0] == 0 or datExpr.shape[1] == 0:
        raise ConfigurationError("Expression matrix is empty after filtering.")

    datExpr = imputeMissing(datExpr, method=config.impute)

    audit = pd.DataFrame(audit, columns=auditColumns)
    if audit.shape[0] > 0:
        warn(f"{audit.shape[0]} gene(s)/sample(s) removed during pre-processing, see the audit table.",
             verbose=verbose)

    clean = geneExpr[datExpr.index, datExpr.columns].copy()
    clean.X = datExpr.values.astype(float)

    report("\tDone pre-processing..\n", color='', verbose=verbose)

    return clean, audit
