from setuptools import setup


setup(
    name="ratecard-recon",
    version="0.1.0",
    description="Local rate card ingestion and overlap reconciliation for marketplace sellers",
    packages=["ratecard_recon"],
    python_requires=">=3.9",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "test": ["pytest"],
        "all": ["xlrd"],
    },
    entry_points={
        "console_scripts": [
            "ratecard-recon=ratecard_recon.cli:main",
        ]
    },
)
