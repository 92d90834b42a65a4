"""Calculate and compare multi-resolution k-mer signatures."""

from .base import Sketch, MultiResolutionSignature
from .calc import SignatureBuilder, BuildResult, BottomKAccumulator, calc_sketch
