"""Storefront visitor session, attribution and referral engine."""
