import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import cut_tree
from sklearn.impute import KNNImputer
from sklearn.preprocessing import scale

from PyGFAP.dynamicTree import hclust, Dendrogram
from PyGFAP.errors import ConfigurationError, NumericalDegeneracyWarning
from PyGFAP.network import standardize
from PyGFAP.traits import corPvalue
from PyGFAP.utils import report, warn


def moduleEigengenes(expr, colors, impute=True, align="along average", excludeGrey=True, grey="grey",
                     subHubs=True, softPower=6, scaleVar=True, verbose=True):
    """
    Calculates module eigengenes (1st principal component) of modules in a given single dataset.

    :param expr: expression data, samples in rows and genes in columns
    :type expr: pandas dataframe
    :param colors: module color of each gene
    :type colors: list or ndarray
    :param impute: impute missing values with k-nearest neighbours before the decomposition (default: True)
    :type impute: bool
    :param align: "along average" flips each eigengene so that it correlates positively with the average expression of the module; "" keeps the sign of the decomposition (default: "along average")
    :type align: str
    :param excludeGrey: do not calculate an eigengene for unassigned genes (default: True)
    :type excludeGrey: bool
    :param grey: color of unassigned genes (default: "grey")
    :type grey: str
    :param subHubs: use a hub gene weighted average when the decomposition fails (default: True)
    :type subHubs: bool
    :param softPower: power used to weight genes for the hub gene average (default: 6)
    :type softPower: int
    :param scaleVar: scale each gene to unit variance before the decomposition (default: True)
    :type scaleVar: bool

    :return: dictionary with "eigengenes" (samples x modules), "averageExpr", "varExplained", "isPC" and "isHub"
    :rtype: dict
    """
    if expr is None or colors is None:
        raise ConfigurationError("moduleEigengenes: expr and colors can not be None.")
    if expr.shape is None or len(expr.shape) != 2:
        raise ConfigurationError("moduleEigengenes: expr must be two-dimensional.")
    colors = np.asarray(colors).astype(str)
    if expr.shape[1] != len(colors):
        raise ConfigurationError("moduleEigengenes: ncol(expr) and length(colors) must be equal (one color per gene).")
    if softPower < 0:
        raise ConfigurationError("softPower must be non-negative")
    if align not in ["along average", ""]:
        raise ConfigurationError(f"Unrecognized align {align}. Recognized values are ['along average', '']")

    modlevels = np.unique(colors)
    if excludeGrey:
        modlevels = modlevels[modlevels != str(grey)]

    report(f"Calculating {len(modlevels)} module eigengenes in given set...", verbose=verbose)

    PrinComps = pd.DataFrame(np.nan, index=expr.index, columns=["ME" + modlevel for modlevel in modlevels])
    averExpr = pd.DataFrame(np.nan, index=expr.index, columns=["AE" + modlevel for modlevel in modlevels])
    varExpl = pd.DataFrame(np.nan, index=[0], columns=PrinComps.columns)
    isPC = np.repeat(True, len(modlevels))
    isHub = np.repeat(False, len(modlevels))

    for i, modulename in enumerate(modlevels):
        datModule = expr.loc[:, colors == modulename].values.astype(float)
        if impute and datModule.shape[1] > 1 and np.isnan(datModule).any():
            # define imputer
            imputer = KNNImputer(n_neighbors=min(10, datModule.shape[1] - 1))
            datModule = imputer.fit_transform(datModule.T).T
        datModule = np.nan_to_num(datModule)
        if scaleVar:
            datModule = scale(datModule)
        else:
            datModule = datModule - datModule.mean(axis=0)

        if datModule.shape[1] == 1:
            pc = datModule[:, 0]
            varExpl.iloc[0, i] = 1.0
        else:
            try:
                u, d, v = np.linalg.svd(datModule, full_matrices=False)
                pc = u[:, 0]
                total = np.sum(d ** 2)
                varExpl.iloc[0, i] = d[0] ** 2 / total if total > 0 else 0
                if total <= 0:
                    warn(f"Module {modulename} has no variance; its eigengene is set to 0.",
                         category=NumericalDegeneracyWarning, verbose=verbose)
                    pc = np.zeros(datModule.shape[0])
            except np.linalg.LinAlgError as e:
                if not subHubs:
                    raise
                report(f" ..principal component calculation for module {modulename} failed with the following "
                       f"error: {e}\n     ..hub genes will be used instead of principal components.",
                       verbose=verbose)
                isPC[i] = False
                isHub[i] = True
                pc = hubGeneSignature(datModule, softPower=softPower)
                with np.errstate(invalid='ignore', divide='ignore'):
                    cors = [np.corrcoef(pc, datModule[:, j])[0, 1] for j in range(datModule.shape[1])]
                varExpl.iloc[0, i] = np.nanmean(np.square(cors))

        averExpr.iloc[:, i] = datModule.mean(axis=1)
        if align == "along average":
            with np.errstate(invalid='ignore', divide='ignore'):
                corAve = np.corrcoef(averExpr.iloc[:, i], pc)[0, 1]
            if not np.isfinite(corAve):
                corAve = 0
            if corAve < 0:
                pc = -1 * pc
        PrinComps.iloc[:, i] = pc

    report("\tDone..\n", color='', verbose=verbose)

    return {"eigengenes": PrinComps, "averageExpr": averExpr, "varExplained": varExpl, "isPC": isPC,
            "isHub": isHub}


def hubGeneSignature(scaledExpr, softPower=6):
    """
    weighted average of the scaled expression of a module, weights are the intramodular connectivity of each gene
    signed by its covariance with the hub gene
    """
    covEx = np.cov(scaledExpr, rowvar=False)
    covEx[~np.isfinite(covEx)] = 0
    modAdj = np.abs(covEx) ** softPower
    kIM = (modAdj.mean(axis=0)) ** 3
    if np.max(kIM) > 1:
        kIM = kIM - 1
    kIM[~np.isfinite(kIM)] = 0
    hub = np.argmax(kIM)
    alignSign = np.sign(covEx[:, hub])
    alignSign[~np.isfinite(alignSign)] = 0
    if np.sum(kIM) == 0:
        return scaledExpr[:, hub]
    return scaledExpr @ (kIM * alignSign) / np.sum(kIM)


def moduleDissimilarity(MEs):
    """
    1 - pearson correlation between eigengenes; undefined correlations count as fully dissimilar
    """
    with np.errstate(invalid='ignore', divide='ignore'):
        cor = np.corrcoef(MEs.values, rowvar=False)
    diss = 1 - np.atleast_2d(cor)
    diss[~np.isfinite(diss)] = 1
    diss = np.clip((diss + diss.T) / 2, 0, 2)
    np.fill_diagonal(diss, 0)
    return pd.DataFrame(diss, index=MEs.columns, columns=MEs.columns)


def orderMEs(MEs, greyLast=True, greyName="MEgrey"):
    """
    Reorder given eigengenes such that similar ones (as measured by correlation) are next to each other.

    :param MEs: eigengenes, samples x modules
    :type MEs: pandas dataframe
    :param greyLast: put the eigengene of unassigned genes last (default: True)
    :type greyLast: bool
    :param greyName: column name of the eigengene of unassigned genes (default: "MEgrey")
    :type greyName: str

    :return: eigengenes with reordered columns
    :rtype: pandas dataframe
    """
    columns = MEs.columns.tolist()
    grey = [greyName] if greyLast and greyName in columns else []
    clusterMEs = [column for column in columns if column not in grey]
    if len(clusterMEs) > 2:
        h = hclust(moduleDissimilarity(MEs[clusterMEs]), method="average")
        clusterMEs = [clusterMEs[i] for i in Dendrogram.fromLinkage(h).order()]
    return MEs[clusterMEs + grey]


def mergeCloseModules(exprData, colors, cutHeight=0.3, MEs=None, iterate=True, unassdColor="grey", verbose=True):
    """
    Merges modules in gene expression networks that are too close as measured by the correlation of their eigengenes.

    :param exprData: expression data, samples in rows and genes in columns
    :type exprData: pandas dataframe
    :param colors: module color of each gene
    :type colors: list or ndarray
    :param cutHeight: maximum dissimilarity (1 - correlation) of eigengenes that are merged (default: 0.3)
    :type cutHeight: float
    :param MEs: eigengenes of the given colors, calculated if not given
    :type MEs: pandas dataframe
    :param iterate: repeat merging until no modules are close enough (default: True)
    :type iterate: bool
    :param unassdColor: color of unassigned genes (default: "grey")
    :type unassdColor: str

    :return: dictionary with "colors", "newMEs", "oldMEs", "nMerges", "dendros" and "cutHeight"
    :rtype: dict
    """
    if cutHeight < 0 or cutHeight > 1:
        raise ConfigurationError(f"Given cutHeight {cutHeight} is out of sensible range between 0 and 1")
    colors = np.asarray(colors).astype(str)
    if exprData.shape[1] != len(colors):
        raise ConfigurationError("Number of genes in exprData is different from the length of original colors.")

    report(f"mergeCloseModules: Merging modules whose distance is less than {cutHeight}", verbose=verbose)

    if MEs is None:
        MEs = moduleEigengenes(exprData, colors, excludeGrey=True, grey=unassdColor, verbose=verbose)['eigengenes']
    oldMEs = MEs
    MergedColors = colors.copy()
    nMerges = 0
    dendros = []
    iteration = 1
    while True:
        colLevs = np.unique(MergedColors)
        colLevs = colLevs[colLevs != str(unassdColor)]
        if len(colLevs) < 2:
            report(f"mergeCloseModules: less than two proper modules.\n ..color levels are {colLevs.tolist()}\n"
                   f" ..there is nothing to merge.", color='', verbose=verbose)
            break
        if iteration > 1:
            MEs = moduleEigengenes(exprData, MergedColors, excludeGrey=True, grey=unassdColor,
                                   verbose=verbose)['eigengenes']
        MEs = MEs[["ME" + color for color in colLevs]]

        ConsDiss = moduleDissimilarity(MEs)
        Tree = hclust(ConsDiss, method="average")
        dendros.append(Dendrogram.fromLinkage(Tree))
        TreeBranches = cut_tree(Tree, height=cutHeight)[:, 0]

        sizes = pd.Series(MergedColors).value_counts()
        merged = 0
        for branch in np.unique(TreeBranches):
            ColorsOnThisBranch = [column[2:] for column in MEs.columns[TreeBranches == branch]]
            if len(ColorsOnThisBranch) < 2:
                continue
            # the largest module keeps its label; ties go to the first one
            target = max(ColorsOnThisBranch, key=lambda color: (sizes[color], -ColorsOnThisBranch.index(color)))
            for color in ColorsOnThisBranch:
                if color != target:
                    MergedColors[MergedColors == color] = target
                    merged = merged + 1

        nMerges = nMerges + merged
        iteration = iteration + 1
        if merged == 0 or not iterate:
            break

    report("  Calculating new MEs...", verbose=verbose)
    newMEs = moduleEigengenes(exprData, MergedColors, excludeGrey=True, grey=unassdColor,
                              verbose=verbose)['eigengenes']
    newMEs = orderMEs(newMEs, greyName="ME" + str(unassdColor))

    return {"colors": MergedColors, "newMEs": newMEs, "oldMEs": oldMEs, "nMerges": nMerges, "dendros": dendros,
            "cutHeight": cutHeight}


def moduleMembership(expr, MEs, corType="pearson"):
    """
    correlation of every gene with every module eigengene (kME) and its p-value

    :param expr: expression data, samples in rows and genes in columns
    :type expr: pandas dataframe
    :param MEs: eigengenes, samples x modules, with the same samples as expr
    :type MEs: pandas dataframe

    :return: kME and p-value tables, genes x modules
    :rtype: tuple(pandas dataframe, pandas dataframe)
    """
    if not expr.index.equals(MEs.index):
        raise ConfigurationError("expr and MEs must have the same samples.")
    nSamples = expr.shape[0]
    Zx, _ = standardize(expr, corType=corType)
    Zm, _ = standardize(MEs, corType=corType)
    cor = np.clip(Zx.T @ Zm / (nSamples - 1), -1, 1)
    columns = ["kME" + column[2:] if column.startswith("ME") else column for column in MEs.columns]
    kME = pd.DataFrame(cor, index=expr.columns, columns=columns)
    return kME, corPvalue(kME, nSamples)
