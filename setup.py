from setuptools import setup

setup(
    name='PyGFAP',  # the name of your package
    packages=['PyGFAP'],  # same as above
    version='0.1.0',  # version number
    license='MIT',  # license type
    description='PyGFAP is a Python package to find co-expression gene modules and relate them to sample traits '
                '(weighted gene co-expression network analysis)',
    # short description
    keywords=['PyGFAP', 'WGCNA', 'bulk', 'gene clustering', 'network analysis', 'co-expression'],  #
    install_requires=[  # these can also include >, <, == to enforce version compatibility
        'pandas>=2.1.0',  # make sure the packages you put here are those NOT included in the
        'numpy>=1.24.0',  # base python distribution
        'scipy>=1.9.1',
        'scikit-learn>=1.2.2',
        'statsmodels>=0.14.0',
        'matplotlib>=3.5.2',
        'setuptools>=67.4.0',
        'anndata>=0.8.0',
        'psutil>=5.9.0',
    ],
    extras_require={
        'test': ['pytest>=7.0.0'],
    },
    classifiers=[  # choose from here: https://pypi.org/classifiers/
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research ',
        'Topic :: Scientific/Engineering :: Bio-Informatics',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.10',
    ],
)
