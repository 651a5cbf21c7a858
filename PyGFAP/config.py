import math

from PyGFAP.errors import ConfigurationError

# public values
networkTypes = ["unsigned", "signed", "signed hybrid"]
TOMDenoms = ["min", "mean"]
corTypes = ["pearson", "spearman"]
linkageMethods = ["single", "complete", "average", "weighted", "centroid"]
imputeMethods = ["zero", "mean", "knn"]


class WGCNAConfig:
    """
    All the parameters of one co-expression analysis with their defaults.

    :param TPMcutoff: remove genes that never exceed this expression in any sample; None disables it (default: None)
    :type TPMcutoff: float
    :param minFraction: minimum fraction of present values a gene or a sample needs to be kept (default: 1/2)
    :type minFraction: float
    :param minNSamples: minimum number of present samples for a gene (default: 4)
    :type minNSamples: int
    :param minNGenes: minimum number of present genes for a sample (default: 4)
    :type minNGenes: int
    :param minRelativeVariance: genes with std/mean below this value and mean above highExpressionFloor are removed (default: 0, disabled)
    :type minRelativeVariance: float
    :param highExpressionFloor: mean expression above which the relative variance filter applies (default: inf)
    :type highExpressionFloor: float
    :param sampleCut: height used to cut the sample dendrogram to remove outlier samples (default: inf, no sample removed)
    :type sampleCut: float
    :param impute: policy used for missing values left after filtering; "zero", "mean" or "knn" (default: "zero")
    :type impute: str
    :param powers: candidate soft thresholding powers (default: [1:10, 11:21:2])
    :type powers: list of int
    :param RsquaredCut: scale free topology R^2 needed to choose a power (default: 0.9)
    :type RsquaredCut: float
    :param MeanCut: if given, the chosen power also needs a mean connectivity below this number (default: None)
    :type MeanCut: float
    :param defaultPower: power used when none of the candidates reaches RsquaredCut (default: 6)
    :type defaultPower: int
    :param nBreaks: number of connectivity bins for the scale free fit (default: 10)
    :type nBreaks: int
    :param networkType: "unsigned", "signed" or "signed hybrid" (default: "signed")
    :type networkType: str
    :param corType: gene-gene correlation, "pearson" or "spearman" (default: "pearson")
    :type corType: str
    :param TOMDenom: "min" or "mean" denominator of the topological overlap (default: "min")
    :type TOMDenom: str
    :param nThreads: number of threads used for the topological overlap blocks (default: 1)
    :type nThreads: int
    :param blockSize: number of genes per block in the soft threshold and topological overlap steps; None splits
        the genes into at least minBlocks blocks that fit in memory (default: None)
    :type blockSize: int
    :param timeout: seconds after which the soft threshold or topological overlap computation is cancelled (default: None)
    :type timeout: float
    :param linkageMethod: hierarchical clustering linkage (default: "average")
    :type linkageMethod: str
    :param minModuleSize: minimum number of genes in a module (default: 20)
    :type minModuleSize: int
    :param deepSplit: sensitivity of the dynamic branch cut between 0 and 4 (default: 2)
    :type deepSplit: float
    :param pamStage: attach unassigned genes to the closest module after the tree cut (default: True)
    :type pamStage: bool
    :param pamRespectsDendro: only attach genes to modules on the same branch (default: False)
    :type pamRespectsDendro: bool
    :param naColor: color of genes that do not belong to any module (default: "grey")
    :type naColor: str
    :param MEDissThres: eigengene dissimilarity under which modules are merged (default: 0.3)
    :type MEDissThres: float
    :param traitCorType: module-trait correlation, "pearson" or "spearman" (default: "spearman")
    :type traitCorType: str
    :param pvalueThreshold: p-value under which a module-trait correlation is significant (default: 0.05)
    :type pvalueThreshold: float
    """

    def __init__(self,
                 TPMcutoff=None,
                 minFraction=1 / 2,
                 minNSamples=4,
                 minNGenes=4,
                 minRelativeVariance=0.0,
                 highExpressionFloor=float('inf'),
                 sampleCut=float('inf'),
                 impute="zero",
                 powers=None,
                 RsquaredCut=0.9,
                 MeanCut=None,
                 defaultPower=6,
                 nBreaks=10,
                 networkType="signed",
                 corType="pearson",
                 TOMDenom="min",
                 nThreads=1,
                 blockSize=None,
                 timeout=None,
                 linkageMethod="average",
                 minModuleSize=20,
                 deepSplit=2,
                 pamStage=True,
                 pamRespectsDendro=False,
                 naColor="grey",
                 MEDissThres=0.3,
                 traitCorType="spearman",
                 pvalueThreshold=0.05):
        if powers is None:
            powers = list(range(1, 11)) + list(range(11, 21, 2))

        self.TPMcutoff = TPMcutoff
        self.minFraction = minFraction
        self.minNSamples = minNSamples
        self.minNGenes = minNGenes
        self.minRelativeVariance = minRelativeVariance
        self.highExpressionFloor = highExpressionFloor
        self.sampleCut = sampleCut
        self.impute = impute

        self.powers = list(powers)
        self.RsquaredCut = RsquaredCut
        self.MeanCut = MeanCut
        self.defaultPower = defaultPower
        self.nBreaks = nBreaks

        self.networkType = networkType
        self.corType = corType
        self.TOMDenom = TOMDenom
        self.nThreads = nThreads
        self.blockSize = blockSize
        self.timeout = timeout

        self.linkageMethod = linkageMethod
        self.minModuleSize = minModuleSize
        self.deepSplit = deepSplit
        self.pamStage = pamStage
        self.pamRespectsDendro = pamRespectsDendro
        self.naColor = naColor

        self.MEDissThres = MEDissThres

        self.traitCorType = traitCorType
        self.pvalueThreshold = pvalueThreshold

        self.validate()

    def validate(self):
        """
        Check every parameter, raise ConfigurationError on the first invalid one
        """
        if not 0 < self.minFraction <= 1:
            raise ConfigurationError("minFraction must be in (0, 1].")
        if self.minNSamples < 1 or self.minNGenes < 1:
            raise ConfigurationError("minNSamples and minNGenes must be positive.")
        if self.minRelativeVariance < 0:
            raise ConfigurationError("minRelativeVariance can not be negative.")
        if self.impute not in imputeMethods:
            raise ConfigurationError(f"Unrecognized impute policy {self.impute}. "
                                     f"Recognized values are {imputeMethods}")

        if len(self.powers) == 0 or any(p <= 0 for p in self.powers):
            raise ConfigurationError("powers must be a non-empty list of positive numbers.")
        if not 0 < self.RsquaredCut <= 1:
            raise ConfigurationError("RsquaredCut must be in (0, 1].")
        if self.defaultPower <= 0:
            raise ConfigurationError("defaultPower must be positive.")
        if self.nBreaks < 2:
            raise ConfigurationError("nBreaks must be at least 2.")

        if self.networkType not in networkTypes:
            raise ConfigurationError(f"Unrecognized networkType {self.networkType}. "
                                     f"Recognized values are {networkTypes}")
        if self.corType not in corTypes:
            raise ConfigurationError(f"Unsupported correlation method {self.corType}. "
                                     f"Recognized values are {corTypes}")
        if self.TOMDenom not in TOMDenoms:
            raise ConfigurationError(f"Invalid TOMDenom {self.TOMDenom}. Recognized values are {TOMDenoms}")
        if self.nThreads < 1:
            raise ConfigurationError("nThreads must be at least 1.")
        if self.blockSize is not None and self.blockSize < 1:
            raise ConfigurationError("blockSize must be at least 1.")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout must be positive.")

        if self.linkageMethod not in linkageMethods:
            raise ConfigurationError(f"Invalid clustering method {self.linkageMethod}. "
                                     f"Recognized values are {linkageMethods}")
        if self.minModuleSize <= 0:
            raise ConfigurationError("minModuleSize must be positive.")
        if not 0 <= self.deepSplit <= 4:
            raise ConfigurationError("deepSplit must be between 0 and 4.")

        if not 0 <= self.MEDissThres <= 1:
            raise ConfigurationError("MEDissThres must be between 0 and 1.")

        if self.traitCorType not in corTypes:
            raise ConfigurationError(f"Unsupported correlation method {self.traitCorType}. "
                                     f"Recognized values are {corTypes}")
        if not 0 < self.pvalueThreshold <= 1 or math.isnan(self.pvalueThreshold):
            raise ConfigurationError("pvalueThreshold must be in (0, 1].")

    def update(self, **kwargs):
        """
        Return a new config with some parameters changed
        """
        params = self.toDict()
        for key in kwargs:
            if key not in params:
                raise ConfigurationError(f"Unknown parameter {key}.")
        params.update(kwargs)
        return WGCNAConfig(**params)

    def toDict(self):
        return dict(vars(self))

    def __repr__(self):
        params = ", ".join(f"{key}={value!r}" for key, value in self.toDict().items())
        return f"WGCNAConfig({params})"
