"""잡 핸들러 패키지 (하위 모듈은 load_handlers()로 로드)"""
