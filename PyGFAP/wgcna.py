import os
import pickle

import numpy as np
import pandas as pd

from PyGFAP.config import WGCNAConfig
from PyGFAP.dynamicTree import detectModules, colors2labels
from PyGFAP.eigengenes import mergeCloseModules, moduleMembership
from PyGFAP.errors import ConfigurationError
from PyGFAP.geneExp import GeneExp
from PyGFAP.network import adjacency, TOMsimilarity, TOMdissimilarity
from PyGFAP.preprocess import preprocessExpression
from PyGFAP.softThreshold import pickSoftThreshold
from PyGFAP.traits import encodeTraits, moduleTraitCorrelation
from PyGFAP.utils import report, warn, writeTable, BOLD, OKBLUE, WARNING


class WGCNA(GeneExp):
    """
    A class used to do weighted gene co-expression network analysis.

    :param name: name of the WGCNA used for saved files (default: 'WGCNA')
    :type name: str
    :param config: parameters of the analysis, keyword arguments override single parameters (default: WGCNAConfig())
    :type config: WGCNAConfig
    :param outputPath: directory where tables and the pickled object are written (default: current directory)
    :type outputPath: str
    :param verbose: print progress (default: True)
    :type verbose: bool
    :param checkpoint: function called between blocks of the soft threshold and topological overlap calculations; it can raise ComputationCancelled to stop the run
    :type checkpoint: callable
    :param geneExpr: raw expression data
    :type geneExpr: anndata
    :param datExpr: preprocessed expression data; after findModules var holds dynamicColors, moduleColors and moduleLabels
    :type datExpr: anndata
    :param audit: every gene and sample removed during pre-processing with the reason
    :type audit: pandas dataframe
    :param power: soft thresholding power used to build the network
    :type power: int
    :param powerIsFallback: True when no candidate power reached RsquaredCut and the default power was used
    :type powerIsFallback: bool
    :param sft: soft threshold table which has information for each powers
    :type sft: pandas dataframe
    :param adjacency: adjacency matrix
    :type adjacency: pandas dataframe
    :param TOM: topological overlap matrix
    :type TOM: pandas dataframe
    :param dissTOM: 1 - TOM
    :type dissTOM: pandas dataframe
    :param geneTree: average hierarchical clustering of dissTOM matrix
    :type geneTree: Dendrogram
    :param dynamicMods: numerical labels found by the dynamic tree cut before merging
    :type dynamicMods: ndarray
    :param MEs: eigengenes of the merged modules, samples x modules
    :type MEs: pandas dataframe
    :param mergeInfo: number of merges, eigengenes before merging and eigengene dendrograms
    :type mergeInfo: dict
    :param kME: correlation between each gene and each module eigengene
    :type kME: pandas dataframe
    :param datTraits: numeric sample traits
    :type datTraits: pandas dataframe
    :param moduleTraitCor: correlation between each module and each trait
    :type moduleTraitCor: pandas dataframe
    :param moduleTraitPvalue: p-value of correlation between each module and each trait
    :type moduleTraitPvalue: pandas dataframe
    :param significantModules: modules with at least one significant trait correlation
    :type significantModules: list
    """

    def __init__(self, name='WGCNA',
                 config=None,
                 anndata=None, geneExp=None, geneExpPath=None, sep=',', geneIdColumn=0,
                 geneInfo=None, sampleInfo=None, sampleInfoPath=None,
                 outputPath=None, verbose=True, checkpoint=None,
                 **kwargs):

        super().__init__(anndata=anndata, geneExp=geneExp, geneExpPath=geneExpPath, sep=sep,
                         geneIdColumn=geneIdColumn, geneInfo=geneInfo, sampleInfo=sampleInfo, verbose=verbose)
        if sampleInfoPath is not None:
            self.updateSampleInfo(path=sampleInfoPath, sep=sep)

        if config is None:
            config = WGCNAConfig(**kwargs)
        elif len(kwargs) > 0:
            config = config.update(**kwargs)

        self.name = name
        self.config = config
        self.verbose = verbose
        self.checkpoint = checkpoint
        self.outputPath = os.getcwd() if outputPath is None else outputPath

        self.datExpr = None
        self.audit = None

        self.power = None
        self.sft = None
        self.powerIsFallback = None

        self.adjacency = None
        self.TOM = None
        self.dissTOM = None

        self.geneTree = None
        self.dynamicMods = None

        self.MEs = None
        self.mergeInfo = None
        self.kME = None
        self.kMEPvalue = None

        self.datTraits = None
        self.moduleTraitCor = None
        self.moduleTraitPvalue = None
        self.moduleTraitNObs = None
        self.significantModules = None

    def preprocess(self):
        self.datExpr, self.audit = preprocessExpression(self.geneExpr, config=self.config, verbose=self.verbose)
        return self

    def findModules(self):
        if self.datExpr is None:
            self.preprocess()
        config = self.config

        report(f"{BOLD}{OKBLUE}Run WGCNA...", verbose=self.verbose)
        expr = self.datExpr.to_df()

        # Call the network topology analysis function
        self.power, self.sft = pickSoftThreshold(expr, powerVector=config.powers, RsquaredCut=config.RsquaredCut,
                                                 MeanCut=config.MeanCut, defaultPower=config.defaultPower,
                                                 nBreaks=config.nBreaks, networkType=config.networkType,
                                                 corType=config.corType, blockSize=config.blockSize,
                                                 timeout=config.timeout, checkpoint=self.checkpoint,
                                                 verbose=self.verbose)
        self.powerIsFallback = not self.sft['selected'].any()

        # Set Power
        self.adjacency = adjacency(expr, power=self.power, adjacencyType=config.networkType,
                                   corType=config.corType, verbose=self.verbose)

        # Turn adjacency into topological overlap
        self.TOM = TOMsimilarity(self.adjacency, TOMDenom=config.TOMDenom, nThreads=config.nThreads,
                                 blockSize=config.blockSize, timeout=config.timeout, checkpoint=self.checkpoint,
                                 verbose=self.verbose)
        self.dissTOM = TOMdissimilarity(self.TOM)

        report("Detecting modules...", verbose=self.verbose)
        self.geneTree, self.dynamicMods, dynamicColors = detectModules(self.dissTOM,
                                                                       minModuleSize=config.minModuleSize,
                                                                       deepSplit=config.deepSplit,
                                                                       linkageMethod=config.linkageMethod,
                                                                       pamStage=config.pamStage,
                                                                       pamRespectsDendro=config.pamRespectsDendro,
                                                                       naColor=config.naColor,
                                                                       verbose=self.verbose)

        # Call an automatic merging function
        merge = mergeCloseModules(expr, dynamicColors, cutHeight=config.MEDissThres, unassdColor=config.naColor,
                                  verbose=self.verbose)

        datExpr = self.datExpr.copy()
        datExpr.var['dynamicColors'] = dynamicColors
        # The merged module colors; Rename to moduleColors
        datExpr.var['moduleColors'] = merge['colors']
        # Construct numerical labels corresponding to the colors
        datExpr.var['moduleLabels'] = colors2labels(merge['colors'], naColor=config.naColor)
        self.datExpr = datExpr

        # Eigengenes of the new merged modules:
        self.MEs = merge['newMEs']
        self.mergeInfo = {"nMerges": merge['nMerges'], "oldMEs": merge['oldMEs'], "dendros": merge['dendros'],
                          "cutHeight": merge['cutHeight']}

        if self.MEs.shape[1] > 0:
            self.kME, self.kMEPvalue = moduleMembership(expr, self.MEs)
        else:
            warn(f"No module with at least {config.minModuleSize} genes was found; every gene is {config.naColor}.",
                 verbose=self.verbose)

        report("\tDone running WGCNA..\n", color='', verbose=self.verbose)
        return self

    def runWGCNA(self):
        WGCNA.preprocess(self)

        WGCNA.findModules(self)

        return self

    def analyseWGCNA(self):
        if self.MEs is None:
            self.findModules()
        report(f"{BOLD}{OKBLUE}Analysing WGCNA...", verbose=self.verbose)

        self.updateDatTraits()

        report("Calculating module trait relationship ...", verbose=self.verbose)
        self.moduleTraitCor, self.moduleTraitPvalue, self.moduleTraitNObs, self.significantModules = \
            moduleTraitCorrelation(self.MEs, self.datTraits, corType=self.config.traitCorType,
                                   pvalueThreshold=self.config.pvalueThreshold, verbose=self.verbose)

        return self

    def updateDatTraits(self):
        """
        update numeric data traits from the current sample information of the samples kept by preprocess
        """
        if self.datExpr is None:
            raise ConfigurationError("Run preprocess before updating the traits.")
        sampleInfo = self.geneExpr.obs.reindex(self.datExpr.obs_names)
        self.datTraits = encodeTraits(sampleInfo, verbose=self.verbose)
        return self.datTraits

    def __getstate__(self):
        # the checkpoint hook is usually a closure and can not be pickled
        state = self.__dict__.copy()
        state['checkpoint'] = None
        return state

    def saveWGCNA(self):
        """
        Saves the current WGCNA in pickle format with the .p extension
        """
        report(f"{BOLD}{OKBLUE}Saving WGCNA as {self.name}.p", verbose=self.verbose)

        if not os.path.exists(self.outputPath):
            os.makedirs(self.outputPath)
        path = os.path.join(self.outputPath, self.name + '.p')
        with open(path, 'wb') as picklefile:
            pickle.dump(self, picklefile)
        return path

    def _checkModules(self):
        if self.datExpr is None or 'moduleColors' not in self.datExpr.var.columns:
            raise ConfigurationError("Modules are not found yet, run findModules first.")

    def getModuleName(self):
        self._checkModules()
        return np.unique(self.datExpr.var['moduleColors']).tolist()

    def getGeneModule(self, moduleName):
        """
        return genes information of each given module
        """
        self._checkModules()
        if isinstance(moduleName, str):
            moduleName = [moduleName]
        output = {}
        moduleColors = self.getModuleName()
        for color in moduleName:
            if color not in moduleColors:
                report(f"Module name {color} does not exist!", color=WARNING, verbose=self.verbose)
                continue
            output[color] = self.datExpr.var[self.datExpr.var['moduleColors'] == color]
        return output

    def getModulesGene(self, geneIds):
        """
        return module color of each given gene
        """
        self._checkModules()
        if isinstance(geneIds, str):
            geneIds = [geneIds]

        modules = self.datExpr.var['moduleColors'].reindex(geneIds).tolist()
        if len(modules) == 1:
            modules = modules[0]

        return modules

    def getModuleAssignment(self):
        """
        module of each gene ordered by descending module size, then gene order; unassigned genes come last

        :return: table with gene, moduleLabel, moduleColor and moduleSize columns
        :rtype: pandas dataframe
        """
        self._checkModules()
        var = self.datExpr.var
        table = pd.DataFrame({'gene': var.index.astype(str),
                              'moduleLabel': var['moduleLabels'].values.astype(int),
                              'moduleColor': var['moduleColors'].values.astype(str)})
        table['moduleSize'] = table.groupby('moduleColor')['gene'].transform('count')
        table['unassigned'] = table['moduleLabel'] == 0
        table['position'] = np.arange(table.shape[0])
        table = table.sort_values(['unassigned', 'moduleSize', 'moduleLabel', 'position'],
                                  ascending=[True, False, True, True])
        return table.drop(['unassigned', 'position'], axis=1).reset_index(drop=True)

    def getEigengenes(self):
        if self.MEs is None:
            raise ConfigurationError("Eigengenes are not calculated yet, run findModules first.")
        MEs = self.MEs.copy()
        MEs.index.name = 'sample'
        return MEs

    def getModuleTraitTable(self):
        """
        module trait relationship in long format

        :return: table with module, trait, cor, pvalue, nObs and significant columns
        :rtype: pandas dataframe
        """
        if self.moduleTraitCor is None:
            raise ConfigurationError("Module trait relationship is not calculated yet, run analyseWGCNA first.")
        cor = self.moduleTraitCor.rename_axis('module').reset_index().melt(id_vars='module', var_name='trait',
                                                                            value_name='cor')
        pvalue = self.moduleTraitPvalue.rename_axis('module').reset_index().melt(id_vars='module', var_name='trait',
                                                                                  value_name='pvalue')
        nObs = self.moduleTraitNObs.rename_axis('module').reset_index().melt(id_vars='module', var_name='trait',
                                                                              value_name='nObs')
        table = cor.merge(pvalue, on=['module', 'trait']).merge(nObs, on=['module', 'trait'])
        table['significant'] = table['pvalue'] < self.config.pvalueThreshold
        return table

    def getSoftThresholdTable(self):
        if self.sft is None:
            raise ConfigurationError("Soft threshold is not calculated yet, run findModules first.")
        return self.sft.copy()

    def exportTables(self, outputPath=None):
        """
        write every available output table as csv

        :param outputPath: directory to write to (default: outputPath of the object)
        :type outputPath: str

        :return: paths of the written files
        :rtype: list of str
        """
        if outputPath is None:
            outputPath = self.outputPath
        report(f"{BOLD}{OKBLUE}Exporting tables to {outputPath}", verbose=self.verbose)
        paths = []
        if self.audit is not None:
            paths.append(writeTable(self.audit, os.path.join(outputPath, 'audit.csv')))
        if self.sft is not None:
            paths.append(writeTable(self.getSoftThresholdTable(), os.path.join(outputPath, 'softThreshold.csv')))
        if self.MEs is not None:
            paths.append(writeTable(self.getModuleAssignment(), os.path.join(outputPath, 'moduleAssignment.csv')))
            paths.append(writeTable(self.getEigengenes(), os.path.join(outputPath, 'eigengenes.csv'), index=True))
        if self.moduleTraitCor is not None:
            paths.append(writeTable(self.getModuleTraitTable(),
                                    os.path.join(outputPath, 'moduleTraitCorrelation.csv')))
        return paths
