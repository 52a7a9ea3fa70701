"""Registry read operations: manifests, blobs and listings."""
