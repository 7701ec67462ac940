"""OpenCanvas graph backend: node handles, connection rules, propagation and workflow persistence."""
