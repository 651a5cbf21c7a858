from PyGFAP.config import WGCNAConfig
from PyGFAP.errors import ConfigurationError, DataQualityWarning, NumericalDegeneracyWarning, ComputationCancelled
from PyGFAP.geneExp import GeneExp
from PyGFAP.wgcna import WGCNA
from PyGFAP.utils import readWGCNA
