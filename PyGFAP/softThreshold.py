import time

import numpy as np
import pandas as pd
from statsmodels.formula.api import ols

from PyGFAP.config import networkTypes
from PyGFAP.errors import ConfigurationError
from PyGFAP.network import standardize, correlationFromScaled, transformCorrelation, defaultBlockSize, \
    warnZeroVariance, checkCancellation
from PyGFAP.utils import report, warn, OKGREEN

sftColumns = ["Power", "SFT.R.sq", "slope", "signed R.sq", "truncated R.sq", "mean(k)", "median(k)", "max(k)",
              "selected"]


# Calculation of fitting statistics for evaluating scale free topology fit.
def scaleFreeFitIndex(k, nBreaks=10):
    """
    Fit log10(p(k)) ~ log10(k) over nBreaks equal-width connectivity bins

    :param k: connectivity of each gene
    :type k: ndarray
    :param nBreaks: number of bins (default: 10)
    :type nBreaks: int

    :return: R^2 and slope of the scale free fit and adjusted R^2 of the truncated exponential fit
    :rtype: pandas dataframe
    """
    k = np.asarray(k, dtype=float)
    if len(k) < 2 or np.max(k) - np.min(k) <= 0:
        return pd.DataFrame({'Rsquared.SFT': [np.nan], 'slope.SFT': [np.nan],
                             'truncatedExponentialAdjRsquared': [np.nan]})

    discretized_k = pd.cut(k, nBreaks, labels=False)
    breaks1 = np.linspace(start=np.min(k), stop=np.max(k), num=nBreaks + 1)
    dk2 = 0.5 * (breaks1[1:] + breaks1[:-1])

    dk = np.empty(nBreaks)
    p_dk = np.empty(nBreaks)
    for b in range(nBreaks):
        inBin = k[discretized_k == b]
        p_dk[b] = len(inBin) / len(k)
        dk[b] = np.mean(inBin) if len(inBin) > 0 else np.nan
    # empty bins and zero connectivity use the middle of the bin
    replace = np.logical_or(np.isnan(dk), dk <= 0)
    dk[replace] = dk2[replace]
    if np.any(dk <= 0):
        return pd.DataFrame({'Rsquared.SFT': [np.nan], 'slope.SFT': [np.nan],
                             'truncatedExponentialAdjRsquared': [np.nan]})

    df = pd.DataFrame({'log_dk': np.log10(dk), 'log_p_dk': np.log10(p_dk + 1e-09)})
    df['log_p_dk_10'] = np.power(10, df['log_dk'])

    model1 = ols(formula='log_p_dk ~ log_dk', data=df).fit()
    model2 = ols(formula='log_p_dk ~ log_dk + log_p_dk_10', data=df).fit()
    dfout = pd.DataFrame({'Rsquared.SFT': [model1.rsquared],
                          'slope.SFT': [model1.params['log_dk']],
                          'truncatedExponentialAdjRsquared': [model2.rsquared_adj]})
    return dfout


# Call the network topology analysis function
def pickSoftThreshold(data, powerVector=None, RsquaredCut=0.9, MeanCut=None, defaultPower=6, nBreaks=10,
                      networkType="signed", corType="pearson", blockSize=None, timeout=None, checkpoint=None,
                      verbose=True):
    """
    Analysis of scale free topology for multiple soft thresholding powers

    :param data: expression data, samples in rows and genes in columns
    :type data: pandas dataframe
    :param powerVector: candidate powers (default: [1:10, 11:21:2])
    :type powerVector: list of int
    :param RsquaredCut: signed scale free R^2 the chosen power needs to reach (default: 0.9)
    :type RsquaredCut: float
    :param MeanCut: if given, the chosen power also needs mean(k) <= MeanCut (default: None)
    :type MeanCut: float
    :param defaultPower: power returned when no candidate reaches RsquaredCut (default: 6)
    :type defaultPower: int
    :param networkType: "unsigned", "signed" or "signed hybrid" (default: "signed")
    :type networkType: str
    :param blockSize: number of genes per block (default: at least minBlocks blocks fitting in 1 GB)
    :type blockSize: int
    :param timeout: seconds after which the calculation is cancelled (default: None)
    :type timeout: float
    :param checkpoint: function called before each block; it can raise ComputationCancelled to stop the calculation
    :type checkpoint: callable

    :return: chosen power and the table of fit statistics per power; "selected" marks the power chosen by the
        scale free criterion and is False everywhere when the default power is used
    :rtype: tuple(int, pandas dataframe)
    """
    if powerVector is None:
        powerVector = list(range(1, 11)) + list(range(11, 21, 2))
    powerVector = np.sort(np.asarray(powerVector))
    if networkType not in networkTypes:
        raise ConfigurationError(f"Unrecognized 'networkType' {networkType}. Recognized values are {networkTypes}")

    nGenes = data.shape[1]
    if nGenes < 3:
        raise ConfigurationError("The input data contain fewer than 3 genes.\n"
                                 "This would result in a trivial correlation network.")

    report("pickSoftThreshold: calculating connectivity for given powers...", verbose=verbose)

    if blockSize is None:
        blockSize = defaultBlockSize(nGenes, maxMemoryAllocation=2 ** 30)
    deadline = None if timeout is None else time.monotonic() + timeout

    Z, zeroVar = standardize(data, corType=corType)
    warnZeroVariance(data, zeroVar, verbose=verbose)

    datk = np.zeros((nGenes, len(powerVector)))
    startG = 0
    while startG < nGenes:
        checkCancellation(checkpoint, deadline, timeout, step="pickSoftThreshold")
        endG = min(startG + blockSize, nGenes)
        useGenes = np.arange(startG, endG)

        corx = correlationFromScaled(Z, selectCols=useGenes)
        corx = transformCorrelation(corx, adjacencyType=networkType, power=1, zeroVar=zeroVar)
        corx[:, zeroVar[useGenes]] = 0
        corx[useGenes, np.arange(len(useGenes))] = 1

        for j, power in enumerate(powerVector):
            datk[startG:endG, j] = np.sum(corx ** power, axis=0) - 1

        startG = endG

    datout = pd.DataFrame(np.nan, index=range(len(powerVector)), columns=sftColumns)
    datout['Power'] = powerVector
    datout['selected'] = False
    for i in range(len(powerVector)):
        khelp = datk[:, i]
        SFT1 = scaleFreeFitIndex(k=khelp, nBreaks=nBreaks)
        datout.loc[i, 'SFT.R.sq'] = SFT1.loc[0, 'Rsquared.SFT']
        datout.loc[i, 'slope'] = SFT1.loc[0, 'slope.SFT']
        datout.loc[i, 'signed R.sq'] = -1 * np.sign(SFT1.loc[0, 'slope.SFT']) * SFT1.loc[0, 'Rsquared.SFT']
        datout.loc[i, 'truncated R.sq'] = SFT1.loc[0, 'truncatedExponentialAdjRsquared']
        datout.loc[i, 'mean(k)'] = np.mean(khelp)
        datout.loc[i, 'median(k)'] = np.median(khelp)
        datout.loc[i, 'max(k)'] = np.max(khelp)

    if verbose:
        print(datout)

    # detect threshold more than 0.9 by default
    ind = (datout['signed R.sq'] >= RsquaredCut).values
    if MeanCut is not None:
        ind = np.logical_and(ind, (datout['mean(k)'] <= MeanCut).values)
    if np.sum(ind) > 0:
        powerEstimate = powerVector[ind].min()
        datout['selected'] = datout['Power'] == powerEstimate
        report(f"Selected power to have scale free network is {str(powerEstimate)}.", color=OKGREEN,
               verbose=verbose)
    else:
        powerEstimate = defaultPower
        warn(f"No power reached a scale free fit of {RsquaredCut}! Using the default power {defaultPower}.",
             verbose=verbose)

    powerEstimate = powerEstimate.item() if isinstance(powerEstimate, np.generic) else powerEstimate
    return powerEstimate, datout
