import numpy as np
import pandas as pd
from matplotlib import colors as mcolors
from scipy.cluster.hierarchy import linkage, leaves_list
from scipy.spatial.distance import squareform

from PyGFAP.config import linkageMethods
from PyGFAP.errors import ConfigurationError
from PyGFAP.utils import report, warn

# maximum core scatter and minimum gap (relative to the height range) for deepSplit 0..4
defMCS = [0.64, 0.73, 0.82, 0.91, 0.95]
defMG = [(1.0 - defMC) * 3.0 / 4.0 for defMC in defMCS]
# merge height quantile used as the bottom of the dendrogram
refQuantile = 0.05
# fraction of the (truncated) height range used as default cut height
defaultCutFraction = 0.99

# minimum HSV saturation and value of module colors
minColorSaturation = 0.2
minColorValue = 0.35


def hclust(d, method="average"):
    """
    hierarchical clustering of a square dissimilarity matrix

    :param d: square dissimilarity matrix
    :type d: pandas dataframe or ndarray
    :param method: linkage method (default: "average")
    :type method: str

    :return: scipy linkage matrix
    :rtype: ndarray
    """
    if method not in linkageMethods:
        raise ConfigurationError(f"Invalid clustering method {method}. Recognized values are {linkageMethods}")

    d = np.asarray(d, dtype=float)
    a = squareform(d, checks=False)
    return linkage(a, method=method)


class Dendrogram:
    """
    Binary merge tree over genes. Leaves are 0..nLeaves-1 and internal node i (the i-th merge) is nLeaves + i, as in
    scipy linkage matrices.

    :param left: left child of each merge
    :type left: ndarray
    :param right: right child of each merge
    :type right: ndarray
    :param heights: merge height of each merge
    :type heights: ndarray
    :param sizes: number of leaves under each merge
    :type sizes: ndarray
    """

    def __init__(self, left, right, heights, sizes):
        self.left = np.asarray(left, dtype=int)
        self.right = np.asarray(right, dtype=int)
        self.heights = np.asarray(heights, dtype=float)
        self.sizes = np.asarray(sizes, dtype=int)
        self.nMerge = len(self.heights)
        self.nLeaves = self.nMerge + 1

    @classmethod
    def fromLinkage(cls, Z):
        Z = np.asarray(Z, dtype=float)
        return cls(left=Z[:, 0].astype(int), right=Z[:, 1].astype(int), heights=Z[:, 2], sizes=Z[:, 3].astype(int))

    def toLinkage(self):
        return np.column_stack((self.left, self.right, self.heights, self.sizes)).astype(float)

    def order(self):
        """
        leaf order of the dendrogram, left to right
        """
        return leaves_list(self.toLinkage())

    def mergeMatrix(self):
        """
        merges as (nMerge x 2) matrix with negative leaf numbers (-1..-nLeaves) and positive merge numbers
        (1..nMerge), the usual layout of R hclust objects
        """
        merge = np.empty((self.nMerge, 2), dtype=int)
        for column, children in enumerate([self.left, self.right]):
            isLeaf = children < self.nLeaves
            merge[:, column] = np.where(isLeaf, -(children + 1), children - self.nLeaves + 1)
        return merge


def coreSizeFunc(BranchSize, minClusterSize):
    BaseCoreSize = minClusterSize / 2 + 1
    if BaseCoreSize < BranchSize:
        CoreSize = int(BaseCoreSize + np.sqrt(BranchSize - BaseCoreSize))
    else:
        CoreSize = BranchSize

    return CoreSize


def coreScatter(distM, singletons, minClusterSize):
    """
    average distance between the core (first joined) genes of a branch
    """
    coresize = coreSizeFunc(len(singletons), minClusterSize)
    if coresize < 2:
        return 0.0
    Core = singletons[:coresize]
    return np.mean(distM[np.ix_(Core, Core)].sum(axis=0) / (coresize - 1))


class _Branch:
    def __init__(self, singletons=None, basicClusters=None, size=2, isBasic=True):
        self.isBasic = isBasic
        self.isTopBasic = isBasic
        self.failSize = False
        self.attachHeight = None
        self.size = size
        self.singletons = list(singletons) if singletons is not None else []
        self.basicClusters = list(basicClusters) if basicClusters is not None else []
        self.mergedInto = None

    def basics(self, index):
        return [index] if self.isBasic else list(self.basicClusters)


def cutreeHybrid(dendro, distM, cutHeight=None, minClusterSize=20, deepSplit=2,
                 maxCoreScatter=None, minGap=None, maxAbsCoreScatter=None, minAbsGap=None,
                 minSplitHeight=None, minAbsSplitHeight=None, pamStage=True, pamRespectsDendro=False,
                 maxPamDist=None, respectSmallClusters=True, verbose=True):
    """
    Detect clusters in a dendrogram produced by hierarchical clustering (dynamic hybrid tree cut).

    :param dendro: dendrogram
    :type dendro: Dendrogram or scipy linkage matrix
    :param distM: dissimilarity matrix used to build the dendrogram
    :type distM: pandas dataframe or ndarray
    :param cutHeight: maximum merge height considered (default: 99% of the height range)
    :type cutHeight: float
    :param minClusterSize: minimum cluster size (default: 20)
    :type minClusterSize: int
    :param deepSplit: sensitivity to cluster splitting between 0 and 4 (default: 2)
    :type deepSplit: float
    :param pamStage: assign unlabeled genes to the closest cluster (default: True)
    :type pamStage: bool
    :param pamRespectsDendro: only assign to clusters on the same branch (default: False)
    :type pamRespectsDendro: bool
    :param maxPamDist: maximum distance to a cluster for the PAM stage (default: cutHeight)
    :type maxPamDist: float

    :return: label of each gene, 0 for unassigned, 1 for the largest cluster, 2 for the next one and so on
    :rtype: ndarray
    """
    tree = dendro if isinstance(dendro, Dendrogram) else Dendrogram.fromLinkage(dendro)
    heights = tree.heights
    merges = tree.mergeMatrix()
    nMerge = tree.nMerge
    nPoints = tree.nLeaves

    if nMerge < 1:
        raise ConfigurationError("The given dendrogram is suspicious: number of merges is zero.")
    if minClusterSize <= 0:
        raise ConfigurationError("minClusterSize must be positive.")
    if not 0 <= deepSplit <= len(defMCS) - 1:
        raise ConfigurationError(f"Parameter deepSplit (value {deepSplit}) out of range: "
                                 f"allowable range is 0 through {len(defMCS) - 1}")
    if distM is None:
        raise ConfigurationError("distM must be non-NULL")
    distM = np.array(distM, dtype=float)
    if distM.shape != (nPoints, nPoints):
        raise ConfigurationError("distM has incorrect dimensions.")
    if pamRespectsDendro and not respectSmallClusters:
        warn("cutreeHybrid: parameters pamRespectsDendro (True) and respectSmallClusters (False) imply "
             "contradictory intent.", verbose=verbose)

    report("Going through the merge tree...", verbose=verbose)

    np.fill_diagonal(distM, 0)
    refMerge = max(int(round(nMerge * refQuantile)) - 1, 0)
    refHeight = np.sort(heights)[refMerge]
    if cutHeight is None:
        cutHeight = defaultCutFraction * (np.max(heights) - refHeight) + refHeight
        report(f"..cutHeight not given, setting it to {round(cutHeight, 3)} "
               f"===>  99% of the (truncated) height range in dendro.", color='', verbose=verbose)
    elif cutHeight > np.max(heights):
        cutHeight = np.max(heights)
    if maxPamDist is None:
        maxPamDist = cutHeight

    nMergeBelowCut = np.count_nonzero(heights <= cutHeight)
    if nMergeBelowCut < minClusterSize:
        report("cutHeight set too low: no merges below the cut.", color='', verbose=verbose)
        return np.zeros(nPoints, dtype=int)

    if maxCoreScatter is None:
        maxCoreScatter = np.interp(deepSplit, range(len(defMCS)), defMCS)
    if minGap is None:
        minGap = np.interp(deepSplit, range(len(defMG)), defMG)
    if maxAbsCoreScatter is None:
        maxAbsCoreScatter = refHeight + maxCoreScatter * (cutHeight - refHeight)
    if minAbsGap is None:
        minAbsGap = minGap * (cutHeight - refHeight)
    if minSplitHeight is None:
        minSplitHeight = 0
    if minAbsSplitHeight is None:
        minAbsSplitHeight = refHeight + minSplitHeight * (cutHeight - refHeight)

    branches = []
    IndMergeToBranch = np.repeat(-1, nMerge)
    onBranch = np.repeat(-1, nPoints)

    def failsScores(branch, aveDist, height):
        return branch.isBasic and (branch.size < minClusterSize or aveDist > maxAbsCoreScatter or
                                   height - aveDist < minAbsGap or height < minAbsSplitHeight)

    for merge in range(nMerge):
        height = heights[merge]
        if height > cutHeight:
            continue
        left, right = merges[merge]
        if left < 0 and right < 0:
            branches.append(_Branch(singletons=[-left - 1, -right - 1]))
            IndMergeToBranch[merge] = len(branches) - 1
        elif left < 0 or right < 0:
            gene, node = (-left - 1, right) if left < 0 else (-right - 1, left)
            clust = IndMergeToBranch[node - 1]
            if clust == -1:
                raise RuntimeError("Internal error: a previous merge has no associated cluster.")
            branch = branches[clust]
            if branch.isBasic:
                branch.singletons.append(gene)
            else:
                onBranch[gene] = clust
            branch.size = branch.size + 1
            IndMergeToBranch[merge] = clust
        else:
            clusts = [IndMergeToBranch[left - 1], IndMergeToBranch[right - 1]]
            if clusts[0] == -1 or clusts[1] == -1:
                raise RuntimeError("Internal error: a previous merge has no associated cluster.")
            if branches[clusts[1]].size < branches[clusts[0]].size:
                small, large = clusts[1], clusts[0]
            else:
                small, large = clusts[0], clusts[1]

            SmAveDist = coreScatter(distM, branches[small].singletons, minClusterSize) \
                if branches[small].isBasic else 0
            LgAveDist = coreScatter(distM, branches[large].singletons, minClusterSize) \
                if branches[large].isBasic else 0

            if failsScores(branches[small], SmAveDist, height):
                DoMerge = True
                SmallerFailSize = not (SmAveDist > maxAbsCoreScatter or height - SmAveDist < minAbsGap)
            elif failsScores(branches[large], LgAveDist, height):
                DoMerge = True
                SmallerFailSize = not (LgAveDist > maxAbsCoreScatter or height - LgAveDist < minAbsGap)
                small, large = large, small
            else:
                DoMerge = False

            if DoMerge:
                smallBranch, largeBranch = branches[small], branches[large]
                smallBranch.failSize = SmallerFailSize
                smallBranch.mergedInto = large
                smallBranch.attachHeight = height
                smallBranch.isTopBasic = False
                if largeBranch.isBasic:
                    largeBranch.singletons.extend(smallBranch.singletons)
                else:
                    onBranch[smallBranch.singletons] = large
                largeBranch.size = largeBranch.size + smallBranch.size
                IndMergeToBranch[merge] = large
            else:
                if branches[large].isBasic and not branches[small].isBasic:
                    small, large = large, small
                smallBranch, largeBranch = branches[small], branches[large]
                if largeBranch.isBasic or (pamStage and pamRespectsDendro):
                    newBranch = _Branch(basicClusters=smallBranch.basics(small) + largeBranch.basics(large),
                                        size=smallBranch.size + largeBranch.size, isBasic=False)
                    branches.append(newBranch)
                    smallBranch.attachHeight = height
                    largeBranch.attachHeight = height
                    smallBranch.mergedInto = len(branches) - 1
                    largeBranch.mergedInto = len(branches) - 1
                    IndMergeToBranch[merge] = len(branches) - 1
                else:
                    largeBranch.basicClusters.extend(smallBranch.basics(small))
                    largeBranch.size = largeBranch.size + smallBranch.size
                    smallBranch.attachHeight = height
                    smallBranch.mergedInto = large
                    IndMergeToBranch[merge] = large

    nBranches = len(branches)
    isCluster = np.repeat(False, nBranches)
    SmallLabels = np.zeros(nPoints, dtype=int)

    for clust, branch in enumerate(branches):
        if branch.attachHeight is None:
            branch.attachHeight = cutHeight
        if branch.isTopBasic:
            CoreScatter = coreScatter(distM, branch.singletons, minClusterSize)
            isCluster[clust] = (branch.size >= minClusterSize and CoreScatter < maxAbsCoreScatter and
                                branch.attachHeight - CoreScatter > minAbsGap)
        if branch.failSize:
            SmallLabels[branch.singletons] = clust + 1

    if not respectSmallClusters:
        SmallLabels = np.zeros(nPoints, dtype=int)

    Colors = np.zeros(nPoints, dtype=int)
    branchLabels = np.zeros(nBranches, dtype=int)
    color = 0
    for clust in np.where(isCluster)[0]:
        color = color + 1
        Colors[branches[clust].singletons] = color
        SmallLabels[branches[clust].singletons] = 0
        branchLabels[clust] = color

    nProperLabels = color

    if pamStage and np.any(Colors == 0) and nProperLabels > 0:
        Colors = _pamStage(distM, Colors, SmallLabels, onBranch, branches, branchLabels, nProperLabels,
                           maxPamDist, pamRespectsDendro, respectSmallClusters)

    Colors[Colors < 0] = 0

    return relabelBySize(Colors, minClusterSize=minClusterSize)


def _pamStage(distM, Colors, SmallLabels, onBranch, branches, branchLabels, nProperLabels, maxPamDist,
              pamRespectsDendro, respectSmallClusters):
    """
    assign small clusters and unlabeled genes to the closest cluster if they are within its diameter or maxPamDist
    """
    Colors = Colors.copy()
    ClusterDiam = np.zeros(nProperLabels + 1)
    for cluster in range(1, nProperLabels + 1):
        InCluster = np.where(Colors == cluster)[0]
        nInCluster = len(InCluster)
        if nInCluster > 1:
            AveDistInClust = distM[np.ix_(InCluster, InCluster)].sum(axis=1) / (nInCluster - 1)
            ClusterDiam[cluster] = AveDistInClust.max()

    ColorsX = Colors.copy()

    def labelsOn(branchIndex):
        if branchIndex < 0:
            return []
        return [branchLabels[b] for b in branches[branchIndex].basicClusters if branchLabels[b] != 0]

    def nearestCluster(objects, useObjects):
        MeanDist = distM[np.ix_(objects, useObjects)].mean(axis=0)
        MeanMeanDist = pd.Series(MeanDist).groupby(ColorsX[useObjects]).mean()
        nearest = MeanMeanDist.idxmin()
        return nearest, MeanMeanDist[nearest]

    if respectSmallClusters:
        for sclust in np.unique(SmallLabels[SmallLabels != 0]):
            InCluster = np.where(SmallLabels == sclust)[0]
            if pamRespectsDendro:
                onBr = np.unique(onBranch[InCluster])
                if len(onBr) > 1:
                    raise RuntimeError("Internal error: objects in a small cluster are marked to belong "
                                       f"to several large branches: {onBr}")
                useObjects = np.where(np.isin(ColorsX, labelsOn(onBr[0])))[0]
            else:
                useObjects = np.where(ColorsX != 0)[0]
            if len(useObjects) == 0:
                continue
            nearest, NearestDist = nearestCluster(InCluster, useObjects)
            if NearestDist < ClusterDiam[nearest] or NearestDist < maxPamDist:
                Colors[InCluster] = nearest
            else:
                Colors[InCluster] = -1

    Unlabeled = np.where(Colors == 0)[0]
    for obj in Unlabeled:
        if pamRespectsDendro:
            useObjects = np.where(np.isin(ColorsX, labelsOn(onBranch[obj])))[0]
        else:
            useObjects = np.where(ColorsX != 0)[0]
        if len(useObjects) == 0:
            continue
        nearest, NearestDist = nearestCluster([obj], useObjects)
        if NearestDist < ClusterDiam[nearest] or NearestDist < maxPamDist:
            Colors[obj] = nearest

    return Colors


def relabelBySize(labels, minClusterSize=1):
    """
    relabel clusters 1..m by descending size (ties broken by the position of their first gene); clusters smaller than
    minClusterSize and negative labels become 0
    """
    labels = np.asarray(labels, dtype=int)
    out = np.zeros(len(labels), dtype=int)
    proper = [label for label in np.unique(labels) if label > 0]
    sizes = {label: int(np.sum(labels == label)) for label in proper}
    first = {label: int(np.argmax(labels == label)) for label in proper}
    proper = [label for label in proper if sizes[label] >= minClusterSize]
    ranked = sorted(proper, key=lambda label: (-sizes[label], first[label]))
    for rank, label in enumerate(ranked):
        out[labels == label] = rank + 1
    return out


def standardColors(naColor="grey"):
    """
    saturated CSS4 colors sorted by hue, saturation, value and name
    """
    colors = dict(**mcolors.CSS4_COLORS)
    # Sort colors by hue, saturation, value and name.
    by_hsv = sorted((tuple(mcolors.rgb_to_hsv(mcolors.to_rgba(color)[:3])), name)
                    for name, color in colors.items())
    return [name for hsv, name in by_hsv
            if hsv[1] >= minColorSaturation and hsv[2] >= minColorValue and name != naColor]


def labels2colors(labels, colorSeq=None, naColor="grey", verbose=True):
    """
    Converts a vector of numerical labels into a corresponding vector of colors; 0 is the naColor

    :param labels: numerical labels
    :type labels: list or ndarray
    :param colorSeq: colors to use (default: saturated CSS4 colors sorted by hue)
    :type colorSeq: list of str
    :param naColor: color of label 0 (default: "grey")
    :type naColor: str
    :param verbose: print a message when colors are repeated (default: True)
    :type verbose: bool

    :return: colors
    :rtype: ndarray
    """
    if colorSeq is None:
        colorSeq = standardColors(naColor=naColor)
    labels = np.asarray(labels, dtype=int)

    extColorSeq = list(colorSeq)
    if len(labels) > 0 and np.max(labels) > len(colorSeq):
        nRepeats = int((np.max(labels) - 1) / len(colorSeq)) + 1
        report(f"labels2colors: Number of labels exceeds number of available colors.\n"
               f"Some colors will be repeated {str(nRepeats)} times.", verbose=verbose)
        for rep in range(1, nRepeats):
            extColorSeq.extend([str(item) + "." + str(rep) for item in colorSeq])

    colors = np.empty(len(labels), dtype=object)
    for i, label in enumerate(labels):
        colors[i] = naColor if label <= 0 else extColorSeq[label - 1]

    return colors


def colors2labels(colors, naColor="grey"):
    """
    numerical labels of module colors: naColor is 0 and the other modules are 1..m by descending size, ties broken by
    the position of their first gene
    """
    colors = np.asarray(colors).astype(str)
    modules = [color for color in pd.unique(colors) if color != naColor]
    sizes = {color: int(np.sum(colors == color)) for color in modules}
    ranked = sorted(modules, key=lambda color: -sizes[color])
    labels = np.zeros(len(colors), dtype=int)
    for rank, color in enumerate(ranked):
        labels[colors == color] = rank + 1
    return labels


def detectModules(dissTOM, minModuleSize=20, deepSplit=2, linkageMethod="average", pamStage=True,
                  pamRespectsDendro=False, naColor="grey", verbose=True):
    """
    hierarchical clustering of the TOM dissimilarity followed by the dynamic hybrid tree cut

    :param dissTOM: TOM based dissimilarity
    :type dissTOM: pandas dataframe
    :param minModuleSize: minimum number of genes in a module (default: 20)
    :type minModuleSize: int

    :return: gene tree, numerical labels and colors
    :rtype: tuple(Dendrogram, ndarray, ndarray)
    """
    if minModuleSize <= 0:
        raise ConfigurationError("minModuleSize must be positive.")
    if dissTOM.shape[0] < 2:
        raise ConfigurationError("At least two genes are needed to build a dendrogram.")

    # Call the hierarchical clustering function
    geneTree = Dendrogram.fromLinkage(hclust(dissTOM, method=linkageMethod))

    # Module identification using dynamic tree cut:
    dynamicMods = cutreeHybrid(dendro=geneTree, distM=dissTOM, deepSplit=deepSplit, pamStage=pamStage,
                               pamRespectsDendro=pamRespectsDendro, minClusterSize=minModuleSize,
                               verbose=verbose)
    dynamicColors = labels2colors(dynamicMods, naColor=naColor, verbose=verbose)

    report("\tDone..\n", color='', verbose=verbose)

    return geneTree, dynamicMods, dynamicColors
