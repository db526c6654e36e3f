"""Service layer - 编排寻星流程并持有星表。"""
