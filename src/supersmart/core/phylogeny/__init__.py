"""Tree handling: I/O, rerooting, consensus, calibration and grafting."""
