"""SMS Gate - virtual number reseller backend."""
