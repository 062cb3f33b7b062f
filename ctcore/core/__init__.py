"""Engine, proofs, coordination and acceleration"""
