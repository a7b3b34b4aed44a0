from setuptools import setup, find_packages

setup(
    name="rti_layer",
    version="0.1.0",
    packages=find_packages(include=["rti_layer", "rti_layer.*"]),
    install_requires=[
        'numpy>=1.20.0',
        'pandas>=1.5.0',
        'pyyaml>=5.0',
        'scipy>=1.7.0',
        'matplotlib>=3.3.0',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    python_requires='>=3.8',
    author="",
    author_email="",
    description="Three-layer RTI diffusion model: forward solver and layer parameter fitting",
    url="",
)
