import numpy as np
import pandas as pd
import os
import anndata as ad

from PyGFAP.errors import ConfigurationError
from PyGFAP.utils import report, WARNING


class GeneExp:
    """
    A class used to create gene expression anndata along sample traits including both genes and samples information.
    Samples are the observations of the anndata and genes are the variables.

    :param anndata: if the expression data is in anndata format you should pass it through this parameter. X should be expression matrix (samples x genes). obs is a sample information and var is a gene information.
    :type anndata: anndata
    :param geneExp: expression matrix which genes are in the rows and samples are columns, first column is the gene identifier unless geneIdColumn is None
    :type geneExp: pandas dataframe
    :param geneExpPath: path of expression matrix with the same layout as geneExp
    :type geneExpPath: str
    :param sep: separation symbol to use for reading data in geneExpPath properly
    :type sep: str
    :param geneIdColumn: position of the gene identifier column; None means the dataframe index already contains gene identifiers (default: 0)
    :type geneIdColumn: int
    :param geneInfo: dataframe that contains genes information it should have a same index as gene identifiers
    :type geneInfo: pandas dataframe
    :param sampleInfo: dataframe that contains samples information (traits) it should have a same index as sample identifiers
    :type sampleInfo: pandas dataframe
    :param verbose: print messages (default: True)
    :type verbose: bool
    """

    def __init__(self,
                 anndata=None,
                 geneExp=None,
                 geneExpPath=None,
                 sep=',',
                 geneIdColumn=0,
                 geneInfo=None,
                 sampleInfo=None,
                 verbose=True):
        self.verbose = verbose
        if geneExpPath is not None:
            if not os.path.isfile(geneExpPath):
                raise ValueError("file does not exist!")
            else:
                expressionList = pd.read_csv(geneExpPath, sep=sep)
        elif geneExp is not None:
            if isinstance(geneExp, pd.DataFrame):
                expressionList = geneExp.copy()
            else:
                raise ValueError("geneExp is not data frame!")
        elif anndata is not None:
            if isinstance(anndata, ad.AnnData):
                self.geneExpr = anndata.copy()
                GeneExp.checkIdentifiers(self.geneExpr)
                return
            else:
                raise ValueError("anndata is not AnnData!")
        else:
            raise ValueError("all type of input can not be empty at the same time!")

        if geneIdColumn is not None:
            expressionList.index = expressionList.iloc[:, geneIdColumn].astype(str)  # gene_id
            # drop gene id column
            expressionList = expressionList.drop([expressionList.columns[geneIdColumn]], axis=1)
        expressionList.index = expressionList.index.astype(str)
        expressionList.columns = expressionList.columns.astype(str)
        expressionList.index.name = None
        if not expressionList.index.is_unique:
            duplicated = expressionList.index[expressionList.index.duplicated()].unique().tolist()
            raise ConfigurationError(f"Duplicate gene identifiers: {duplicated}")
        if not expressionList.columns.is_unique:
            raise ConfigurationError("Duplicate sample identifiers in expression matrix.")

        expressionList = expressionList.apply(pd.to_numeric, errors='coerce')

        if geneInfo is None:
            geneInfo = pd.DataFrame(index=expressionList.index)
        else:
            geneInfo = geneInfo.copy()
            geneInfo.index = geneInfo.index.astype(str)
        if sampleInfo is None:
            sampleInfo = pd.DataFrame(index=expressionList.columns)
        else:
            sampleInfo = sampleInfo.copy()
            sampleInfo.index = sampleInfo.index.astype(str)

        self.geneExpr = ad.AnnData(X=expressionList.T.values.astype(float),
                                   obs=sampleInfo.reindex(expressionList.columns),
                                   var=geneInfo.reindex(expressionList.index))
        self.geneExpr.obs_names = expressionList.columns.tolist()
        self.geneExpr.var_names = expressionList.index.tolist()
        GeneExp.checkIdentifiers(self.geneExpr)

    @staticmethod
    def checkIdentifiers(adata):
        """
        gene and sample identifiers should be unique
        """
        if not adata.var_names.is_unique:
            duplicated = adata.var_names[adata.var_names.duplicated()].unique().tolist()
            raise ConfigurationError(f"Duplicate gene identifiers: {duplicated}")
        if not adata.obs_names.is_unique:
            duplicated = adata.obs_names[adata.obs_names.duplicated()].unique().tolist()
            raise ConfigurationError(f"Duplicate sample identifiers: {duplicated}")

    def updateGeneInfo(self, geneInfo=None, path=None, sep=','):
        """
        add/update genes info in expr anndata

        :param geneInfo: gene information table you want to add to your data
        :type geneInfo: pandas dataframe
        :param path: path of geneInfo
        :type path: str
        :param sep: separation symbol to use for reading data in path properly (default: ',')
        :type sep: str
        """
        if path is not None:
            if not os.path.isfile(path):
                raise ValueError("path does not exist!")
            geneInfo = pd.read_csv(path, sep=sep, index_col=0)
        elif geneInfo is not None:
            if not isinstance(geneInfo, pd.DataFrame):
                raise ValueError("geneInfo is not pandas dataframe!")
        else:
            raise ValueError("path and geneInfo can not be empty at the same time!")

        geneInfo = geneInfo.copy()
        geneInfo.index = geneInfo.index.astype(str)
        same_columns = self.geneExpr.var.columns.intersection(geneInfo.columns)
        var = self.geneExpr.var.drop(same_columns, axis=1)
        self.geneExpr.var = pd.concat([var, geneInfo.reindex(var.index)], axis=1)

    def updateSampleInfo(self, sampleInfo=None, path=None, sep=','):
        """
        add/update sample traits in expr anndata

        :param sampleInfo: Sample information table you want to add to your data, indexed by sample identifier
        :type sampleInfo: pandas dataframe
        :param path: path of sample information, first column is the sample identifier
        :type path: str
        :param sep: separation symbol to use for reading data in path properly (default: ',')
        :type sep: str
        """
        if path is not None:
            if not os.path.isfile(path):
                raise ValueError("path does not exist!")
            sampleInfo = pd.read_csv(path, sep=sep, index_col=0)
        elif sampleInfo is not None:
            if not isinstance(sampleInfo, pd.DataFrame):
                raise ValueError("meta data is not pandas dataframe!")
        else:
            raise ValueError("path and metaData can not be empty at the same time!")

        sampleInfo = sampleInfo.copy()
        sampleInfo.index = sampleInfo.index.astype(str)
        if not sampleInfo.index.is_unique:
            raise ConfigurationError("Duplicate sample identifiers in sample information.")
        missing = np.setdiff1d(self.geneExpr.obs_names, sampleInfo.index)
        if len(missing) > 0:
            report(f"\t{len(missing)} sample(s) have no trait record and will be excluded from trait correlation.",
                   color=WARNING, verbose=self.verbose)
        same_columns = self.geneExpr.obs.columns.intersection(sampleInfo.columns)
        obs = self.geneExpr.obs.drop(same_columns, axis=1)
        self.geneExpr.obs = pd.concat([obs, sampleInfo.reindex(obs.index)], axis=1)
