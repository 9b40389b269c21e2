"""Order Service — 注文確定（在庫引き当て + 注文作成）サービス"""
