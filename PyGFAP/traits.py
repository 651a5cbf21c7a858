import numpy as np
import pandas as pd
from scipy.stats import t

from PyGFAP.config import corTypes
from PyGFAP.errors import ConfigurationError
from PyGFAP.utils import report, warn


def encodeTraits(sampleInfo, verbose=True):
    """
    Turn sample information into numeric traits: numeric columns are kept, a column with two levels becomes 0/1
    (levels in sorted order) and a column with more levels becomes one 0/1 column per level named column_level.
    Missing values stay missing.

    :param sampleInfo: sample information indexed by sample identifier
    :type sampleInfo: pandas dataframe

    :return: numeric traits
    :rtype: pandas dataframe
    """
    datTraits = pd.DataFrame(index=sampleInfo.index)
    for column in sampleInfo.columns:
        values = sampleInfo[column]
        if pd.api.types.is_bool_dtype(values) or pd.api.types.is_numeric_dtype(values):
            datTraits[column] = values.astype(float)
            continue
        missing = values.isnull()
        org = sorted(values[~missing].astype(str).unique())
        if len(org) == 2:
            encoded = values.astype(str).map({org[0]: 0.0, org[1]: 1.0})
            datTraits[column] = encoded.where(~missing)
        elif len(org) > 2:
            for name in org:
                encoded = (values.astype(str) == name).astype(float)
                datTraits[f"{column}_{name}"] = encoded.where(~missing)
        else:
            report(f"\tTrait {column} has a single level and is ignored.", color='', verbose=verbose)

    return datTraits


def corPvalue(cor, nSamples):
    """
    Student t p-value of correlations with nSamples - 2 degrees of freedom

    :param cor: correlation coefficients
    :type cor: float, ndarray or pandas dataframe
    :param nSamples: number of samples used for each coefficient
    :type nSamples: int or same shape table

    :return: two-sided p-values
    """
    corValues = np.asarray(cor, dtype=float)
    nValues = np.asarray(nSamples, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        T = np.sqrt(nValues - 2) * (corValues / np.sqrt(1 - (corValues ** 2)))
        T = np.where(np.abs(corValues) >= 1, np.inf, T)
        pvalue = 2 * t.sf(np.abs(T), nValues - 2)
    pvalue = np.where(np.logical_or(np.isnan(corValues), nValues < 3), np.nan, pvalue)
    pvalue = np.clip(pvalue, 0, 1)
    if isinstance(cor, pd.DataFrame):
        return pd.DataFrame(pvalue, index=cor.index, columns=cor.columns)
    if np.ndim(pvalue) == 0:
        return float(pvalue)
    return pvalue


def moduleTraitCorrelation(MEs, datTraits, corType="spearman", pvalueThreshold=0.05, verbose=True):
    """
    Correlate every module eigengene with every trait over the samples both are measured in

    :param MEs: eigengenes, samples x modules
    :type MEs: pandas dataframe
    :param datTraits: numeric traits, samples x traits
    :type datTraits: pandas dataframe
    :param corType: "pearson" or "spearman" (default: "spearman")
    :type corType: str
    :param pvalueThreshold: p-value under which a module trait correlation is significant (default: 0.05)
    :type pvalueThreshold: float

    :return: correlations, p-values and number of samples (modules x traits) and the list of significant modules
    :rtype: tuple(pandas dataframe, pandas dataframe, pandas dataframe, list)
    """
    if corType not in corTypes:
        raise ConfigurationError(f"Unsupported correlation method {corType}. Recognized values are {corTypes}")

    report("Calculating module trait correlations...", verbose=verbose)

    samples = MEs.index[MEs.index.isin(datTraits.index)]
    if len(samples) < MEs.shape[0]:
        report(f"\t{MEs.shape[0] - len(samples)} sample(s) without trait record are excluded.", color='',
               verbose=verbose)
    MEs = MEs.loc[samples]
    traits = datTraits.loc[samples]

    moduleTraitCor = pd.DataFrame(np.nan, index=MEs.columns, columns=traits.columns)
    nObs = pd.DataFrame(0, index=MEs.columns, columns=traits.columns)
    undefined = []
    for module in MEs.columns:
        for trait in traits.columns:
            x = pd.to_numeric(MEs[module], errors='coerce')
            y = pd.to_numeric(traits[trait], errors='coerce')
            present = np.logical_and(x.notnull(), y.notnull())
            x, y = x[present], y[present]
            nObs.loc[module, trait] = int(present.sum())
            if present.sum() < 3 or x.nunique() < 2 or y.nunique() < 2:
                undefined.append(f"{module}/{trait}")
                continue
            moduleTraitCor.loc[module, trait] = np.clip(x.corr(y, method=corType), -1, 1)

    if len(undefined) > 0:
        warn(f"Correlation is undefined (fewer than 3 samples or a constant vector) for: {undefined}", verbose=verbose)

    moduleTraitPvalue = corPvalue(moduleTraitCor, nObs)
    significant = moduleTraitPvalue.lt(pvalueThreshold).any(axis=1)
    significantModules = significant[significant].index.tolist()

    report("\tDone..\n", color='', verbose=verbose)

    return moduleTraitCor, moduleTraitPvalue, nObs, significantModules
