"""Folder-style browsing of flat object storage buckets."""
