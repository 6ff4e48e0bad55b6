from fibonacci.server import main

main()
