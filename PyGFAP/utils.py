import os
import pickle
import warnings

from PyGFAP.errors import DataQualityWarning

# bcolors
HEADER = '\033[95m'
OKBLUE = '\033[94m'
OKCYAN = '\033[96m'
OKGREEN = '\033[92m'
WARNING = '\033[93m'
FAIL = '\033[91m'
ENDC = '\033[0m'
BOLD = '\033[1m'
UNDERLINE = '\033[4m'


def report(message, color=OKCYAN, verbose=True):
    if verbose:
        print(f"{color}{message}{ENDC}", flush=True)


def warn(message, category=DataQualityWarning, verbose=True):
    """
    Print a recoverable issue in the console and raise it through the warnings module
    """
    report(message, color=WARNING, verbose=verbose)
    warnings.warn(message, category, stacklevel=3)


# read WGCNA obj
def readWGCNA(file):
    """
    Read a WGCNA from a saved pickle file.

    :param file: Name / path of WGCNA object
    :type file: str

    :return: PyGFAP object
    :rtype: WGCNA class
    """
    if not os.path.isfile(file):
        raise ValueError('WGCNA object not found at given path!')

    with open(file, 'rb') as picklefile:
        wgcna = pickle.load(picklefile)

    report(f"{BOLD}Reading {wgcna.name} WGCNA done!", color=OKBLUE, verbose=wgcna.verbose)
    return wgcna


def writeTable(table, path, index=False):
    """
    Write one output artifact as csv, creating the parent directory if needed
    """
    directory = os.path.dirname(path)
    if directory != '' and not os.path.exists(directory):
        os.makedirs(directory)
    table.to_csv(path, index=index)
    return path
